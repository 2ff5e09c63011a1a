from typing import Any, Dict

from .base import BaseContextProviderMapper


class AmiContextProviderMapper(BaseContextProviderMapper):
    """
    Id of the newest image matching the query.

    Query:
        owners: Optional list of image owners
        filters: Mapping of EC2 filter name to accepted values
    """

    provider_kind = "ami"

    def _lookup(self, query: Dict[str, Any]) -> str:
        request: Dict[str, Any] = {
            "Filters": [
                {"Name": name, "Values": list(values)}
                for name, values in (query.get("filters") or {}).items()
            ]
        }
        if query.get("owners"):
            request["Owners"] = list(query["owners"])

        ec2 = self._client("ec2", query)
        images = ec2.describe_images(**request).get("Images", [])
        if not images:
            raise self._fail(f"No AMI found matching {request}", query)

        newest = max(images, key=lambda image: image.get("CreationDate", ""))
        return newest["ImageId"]
