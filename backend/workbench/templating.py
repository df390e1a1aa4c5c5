import re
from typing import Any, Mapping

_VAR_PATTERN = re.compile(r"\{\{(\w+)\}\}", re.ASCII)


def substitute(s: Any, vars_: Mapping[str, str]) -> Any:
    """Replace ``{{name}}`` placeholders with values from ``vars_``.

    Unknown names are left verbatim, delimiters included. Inserted values
    are not scanned again, so a value containing ``{{x}}`` stays literal.
    Anything that is not a non-empty string is returned as given.
    """
    if not isinstance(s, str) or not s:
        return s
    if not vars_:
        return s

    def _replace(m: "re.Match[str]") -> str:
        name = m.group(1)
        if name in vars_:
            return str(vars_[name])
        return m.group(0)

    return _VAR_PATTERN.sub(_replace, s)


def substitute_values(mapping: Mapping[str, Any], vars_: Mapping[str, str]) -> dict:
    # keys are never substituted
    return {k: substitute(v, vars_) for k, v in (mapping or {}).items()}
