"""
Load the server configuration.

The configuration is a plain mapping with two keys that the static
dispatcher understands:

    {
        "port": 8080,
        "static": {
            "example.com": "/var/www/example",
            "example.com/docs": {"path": "/var/www/docs", "target": "/v2[path]"}
        }
    }
"""
import json
import typing

Config = typing.Dict[str, typing.Any]


def load_config(filename: str) -> Config:
    """
    Read the configuration from a JSON file.

    Raises ValueError if the file doesn't contain a valid configuration.
    """
    with open(filename, encoding="utf8") as fp:
        try:
            config = json.load(fp)
        except json.JSONDecodeError as e:
            raise ValueError(f"{filename}: {e}") from e

    return check_config(config, filename)


def check_config(config: typing.Any, source: str = "config") -> Config:
    """
    Validate the top-level shape of a configuration mapping.
    """
    if not isinstance(config, dict):
        raise ValueError(f"{source}: expected a mapping at the top level")

    port = config.get("port")
    if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
        raise ValueError(f"{source}: port must be an integer, got {port!r}")

    static = config.get("static")
    if static is not None and not isinstance(static, dict):
        raise ValueError(f"{source}: static must be a mapping of rules")

    return config


def merge_rules(
    config: Config,
    rules: typing.Iterable[typing.Sequence[str]],
    port: typing.Optional[int] = None,
) -> Config:
    """
    Add rules from the command line to a configuration.

    Every rule is a sequence of ``PATTERN ROOT [TARGET]``. Command line rules
    are appended after the rules from the file, and ``port`` (if given)
    replaces the port from the file.
    """
    merged = dict(config)
    static = dict(merged.get("static") or {})

    for rule in rules:
        if len(rule) not in (2, 3):
            raise ValueError(
                f"Invalid static rule {' '.join(rule)!r}, "
                f"expected PATTERN ROOT [TARGET]"
            )
        pattern, root, *target = rule
        if target:
            static[pattern] = {"path": root, "target": target[0]}
        else:
            static[pattern] = root

    merged["static"] = static
    if port is not None:
        merged["port"] = port
    return merged
