"""
IAM Grapher

Scans AWS IAM and Azure RBAC resources, queries and graphs the scan results,
and generates Terraform code with an import script.
"""

__version__ = "0.1.0"
