"""
PSUtilities: Azure DevOps and GitHub utility operations.
"""

from .config import Settings, configure_logging, load_settings
from .devops_client import DevOpsClient
from .errors import (
    ApiError,
    NotFoundError,
    ParameterValidationError,
    PSUtilitiesError,
    PublicIPError,
    UnsupportedRemoteError,
    VariableGroupNotFoundError,
)
from .github_client import GitHubClient
from .models import (
    Pipeline,
    PipelineRun,
    Project,
    PullRequest,
    RemoteInfo,
    Repository,
    Variable,
    VariableGroup,
    VariableUpsertResult,
    WorkItem,
)
from .network import get_public_ip
from .pull_requests import (
    approve_pull_request,
    complete_pull_request,
    get_remote_url,
    parse_remote_url,
)
from .variable_service import (
    export_variable_group_yaml,
    lint_yaml,
    merge_variable,
    sync_variable_groups_from_yaml,
    upsert_variable,
)

__all__ = [
    'Settings', 'configure_logging', 'load_settings',
    'DevOpsClient', 'GitHubClient',
    'PSUtilitiesError', 'ParameterValidationError', 'ApiError', 'NotFoundError',
    'VariableGroupNotFoundError', 'UnsupportedRemoteError', 'PublicIPError',
    'Variable', 'VariableGroup', 'VariableUpsertResult', 'Project', 'Repository',
    'PullRequest', 'WorkItem', 'Pipeline', 'PipelineRun', 'RemoteInfo',
    'get_public_ip',
    'approve_pull_request', 'complete_pull_request', 'get_remote_url', 'parse_remote_url',
    'merge_variable', 'upsert_variable', 'sync_variable_groups_from_yaml',
    'export_variable_group_yaml', 'lint_yaml',
]
