"""Turn a stored request template plus variables into a concrete call."""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import urlencode

from .templating import substitute, substitute_values

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class RequestTemplate:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    query_params: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MaterializedRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[str] = None


def append_query(url: str, params: Mapping[str, str]) -> str:
    if not params:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(params)}"


def materialize(template: RequestTemplate, vars_: Optional[Mapping[str, str]] = None) -> MaterializedRequest:
    vars_ = vars_ or {}
    method = (template.method or "GET").upper()

    url = substitute(template.url, vars_)
    url = append_query(url, template.query_params or {})
    headers = substitute_values(template.headers or {}, vars_)

    body = None
    if method in BODY_METHODS and template.body:
        body = substitute(template.body, vars_)

    return MaterializedRequest(method=method, url=url, headers=headers, body=body)
