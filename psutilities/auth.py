"""
Authentication header helpers shared by the Azure DevOps and GitHub clients.
"""

import base64

from .errors import ParameterValidationError


def ado_auth_header(pat):
    """
    Build the Basic authentication header for Azure DevOps.

    Azure DevOps accepts a PAT as the password of a Basic credential with
    an empty user name, i.e. ``base64(":" + PAT)``.

    Raises:
        ParameterValidationError: if *pat* is empty.
    """
    if not pat:
        raise ParameterValidationError(
            "A personal access token is required. "
            "Pass pat= or set AZURE_DEVOPS_PAT."
        )
    token = base64.b64encode(f":{pat}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


def github_auth_header(token):
    """Build the Bearer authentication header for the GitHub REST API."""
    if not token:
        raise ParameterValidationError(
            "A GitHub token is required. Pass token= or set GITHUB_TOKEN."
        )
    return {"Authorization": f"Bearer {token}"}
