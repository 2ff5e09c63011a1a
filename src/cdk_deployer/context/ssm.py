from typing import Any, Dict

from botocore.exceptions import ClientError

from .base import BaseContextProviderMapper


class SsmContextProviderMapper(BaseContextProviderMapper):
    """
    Value of an SSM parameter.

    Query:
        parameterName: Name of the parameter (required)
    """

    provider_kind = "ssm"

    def _lookup(self, query: Dict[str, Any]) -> str:
        name = query.get("parameterName")
        if not name:
            raise self._fail("The SSM context query has no parameterName", query)

        ssm = self._client("ssm", query)
        try:
            response = ssm.get_parameter(Name=name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ParameterNotFound":
                raise self._fail(f"SSM parameter not available: {name}", query)
            raise

        return response["Parameter"]["Value"]
