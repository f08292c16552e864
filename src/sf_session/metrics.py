"""
Parsing of the API usage header Salesforce attaches to REST responses.
"""

from typing import NamedTuple
import re


class Usage(NamedTuple):
    used: int
    total: int

    @property
    def remaining(self) -> int:
        return self.total - self.used


class PerAppUsage(NamedTuple):
    used: int
    total: int
    name: str

    @property
    def remaining(self) -> int:
        return self.total - self.used


class ApiUsage(NamedTuple):
    api_usage: Usage | None
    per_app_api_usage: PerAppUsage | None


_api_usage_pattern = re.compile(r"(?:^|[^-])api-usage=(?P<used>\d+)/(?P<total>\d+)")
_per_app_usage_pattern = re.compile(
    r"per-app-api-usage=(?P<used>\d+)/(?P<total>\d+)\(appName=(?P<name>[^)]+)\)"
)


def parse_api_usage(sforce_limit_info: str) -> ApiUsage:
    """
    Parse the value of the 'Sforce-Limit-Info' response header.

    Examples:
        'api-usage=18/5000'
        'api-usage=25/5000; per-app-api-usage=17/250(appName=sample-connected-app)'
    """
    usage, per_app = None, None
    if match := _api_usage_pattern.search(sforce_limit_info):
        usage = Usage(int(match["used"]), int(match["total"]))
    if match := _per_app_usage_pattern.search(sforce_limit_info):
        per_app = PerAppUsage(int(match["used"]), int(match["total"]), match["name"])
    return ApiUsage(usage, per_app)
