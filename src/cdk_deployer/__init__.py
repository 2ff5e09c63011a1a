"""Deploys, bootstraps and destroys CDK cloud assemblies on AWS CloudFormation."""

__version__ = "0.1.0"
