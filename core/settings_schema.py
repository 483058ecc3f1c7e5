from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple

_NUMBER = (int, float)
_OPTIONAL_NUMBER = (int, float, type(None))

# section -> key -> accepted python types; "*" accepts any key in the section.
_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "partition": {"size": (int,)},
    "dispatch": {
        "concurrency": (int,),
        "strategy": (str,),
        "poll_ms": _NUMBER,
        "invocation_timeout_s": _OPTIONAL_NUMBER,
        "cancel_grace_s": _NUMBER,
    },
    "engine": {
        "command": (list, str),
        "threads": (int,),
        "target_path": (str,),
        "scheme": (str,),
        "extra_args": (list,),
    },
    "dashboard": {
        "enabled": (bool, type(None)),
        "refresh_s": _NUMBER,
        "api_host": (str,),
        "api_port": (int, type(None)),
    },
    "output": "*",
    "version": None,
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        found = []
        for key, value in payload.items():
            rule = self.schema.get(key, KeyError)
            if rule is KeyError:
                found.append(key)
            elif isinstance(rule, Mapping) and isinstance(value, Mapping):
                found.extend(f"{key}.{sub}" for sub in value if sub not in rule)
        return sorted(found)

    def type_issues(self, payload: Mapping[str, Any]) -> Iterable[Tuple[str, str]]:
        """Yield ``(dotted_key, expected)`` for values of the wrong type."""

        for section, rule in self.schema.items():
            value = payload.get(section)
            if not isinstance(rule, Mapping) or not isinstance(value, Mapping):
                continue
            for key, accepted in rule.items():
                if key not in value:
                    continue
                item = value[key]
                # bool is an int subclass; only accept it where bool is listed
                if isinstance(item, bool) and bool not in accepted:
                    yield f"{section}.{key}", "/".join(t.__name__ for t in accepted)
                elif not isinstance(item, accepted):
                    yield f"{section}.{key}", "/".join(t.__name__ for t in accepted)


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]
