"""Configuration: defaults <- env vars <- YAML file <- CLI args (highest priority).

The YAML file uses the agent layout::

    server:
      url: https://evebox.example.com
      username: agent
      password: secret
    bookmark-directory: /var/lib/eveshipper
    input:
      filename: /var/log/suricata/eve.json
      custom-fields:
        sensor: dmz-1
"""

import argparse
import logging
import os
from dataclasses import dataclass, field

import yaml

from eveshipper.errors import ConfigError

logger = logging.getLogger(__name__)

OUTPUTS = ("stdout", "file", "http")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    input_file: str | None = None
    bookmark_directory: str | None = None
    end: bool = False
    bookmark: bool = True
    oneshot: bool = False
    custom_fields: dict = field(default_factory=dict)
    batch_size: int = 1000
    stats_interval: float = 60.0
    poll_interval: float = 1.0
    retry_interval: float = 1.0
    output: str = "stdout"
    output_file: str | None = None
    server_url: str | None = None
    server_username: str | None = None
    server_password: str | None = None
    verify_tls: bool = True
    watch: bool = True
    verbose: bool = False


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML config file. Returns an empty dict if there is none."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded config from %s", path)
    return data


def _env_number(env, name: str, convert):
    try:
        return convert(env[name])
    except ValueError as err:
        raise ConfigError(f"Invalid value for {name}: {env[name]!r}") from err


def _from_env() -> dict:
    env = os.environ
    kwargs: dict = {}
    if "EVE_INPUT" in env:
        kwargs["input_file"] = env["EVE_INPUT"]
    if "BOOKMARK_DIRECTORY" in env:
        kwargs["bookmark_directory"] = env["BOOKMARK_DIRECTORY"]
    if "START_AT_END" in env:
        kwargs["end"] = _parse_bool(env["START_AT_END"])
    if "DISABLE_BOOKMARK" in env:
        kwargs["bookmark"] = not _parse_bool(env["DISABLE_BOOKMARK"])
    if "ONESHOT" in env:
        kwargs["oneshot"] = _parse_bool(env["ONESHOT"])
    if "BATCH_SIZE" in env:
        kwargs["batch_size"] = _env_number(env, "BATCH_SIZE", int)
    if "STATS_INTERVAL" in env:
        kwargs["stats_interval"] = _env_number(env, "STATS_INTERVAL", float)
    if "POLL_INTERVAL" in env:
        kwargs["poll_interval"] = _env_number(env, "POLL_INTERVAL", float)
    if "EVEBOX_AGENT_SERVER" in env:
        kwargs["server_url"] = env["EVEBOX_AGENT_SERVER"]
    if "EVEBOX_AGENT_USERNAME" in env:
        kwargs["server_username"] = env["EVEBOX_AGENT_USERNAME"]
    if "EVEBOX_AGENT_PASSWORD" in env:
        kwargs["server_password"] = env["EVEBOX_AGENT_PASSWORD"]
    if "WATCH" in env:
        kwargs["watch"] = _parse_bool(env["WATCH"])
    return kwargs


def _from_yaml(data: dict) -> dict:
    kwargs: dict = {}

    server = data.get("server")
    if isinstance(server, str):
        kwargs["server_url"] = server
    elif isinstance(server, dict):
        if server.get("url"):
            kwargs["server_url"] = server["url"]
        if server.get("username"):
            kwargs["server_username"] = str(server["username"])
        if server.get("password"):
            kwargs["server_password"] = str(server["password"])
    if "disable-certificate-check" in data:
        kwargs["verify_tls"] = not _parse_bool(data["disable-certificate-check"])

    if data.get("bookmark-directory"):
        kwargs["bookmark_directory"] = data["bookmark-directory"]

    section = data.get("input") or {}
    if not isinstance(section, dict):
        raise ConfigError("'input' must be a mapping")
    if section.get("filename"):
        kwargs["input_file"] = section["filename"]
    custom = section.get("custom-fields") or {}
    if not isinstance(custom, dict):
        raise ConfigError("'input.custom-fields' must be a mapping")
    if custom:
        kwargs["custom_fields"] = dict(custom)
    for key, name in (("end", "end"), ("bookmark", "bookmark"), ("oneshot", "oneshot")):
        if key in section:
            kwargs[name] = _parse_bool(section[key])

    if "output" in data:
        output = data["output"]
        if isinstance(output, dict):
            kwargs["output"] = output.get("type", "stdout")
            if output.get("filename"):
                kwargs["output_file"] = output["filename"]
        else:
            kwargs["output"] = str(output)
    return kwargs


def _parse_field(value: str) -> tuple[str, str]:
    name, sep, field_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name, field_value


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eveshipper",
        description="Tail a Suricata EVE log and ship its events to a sink",
    )
    parser.add_argument("input_file", nargs="?", default=None,
                        help="EVE file to follow")
    parser.add_argument("-c", "--config", default=None, help="YAML configuration file")
    parser.add_argument("--bookmark-directory", default=None,
                        help="Directory for bookmark files (default: next to the input)")
    parser.add_argument("--end", action="store_true", default=None,
                        help="Start at end of file when there is no valid bookmark")
    parser.add_argument("--no-bookmark", action="store_true", default=False,
                        help="Do not read or write a bookmark")
    parser.add_argument("--oneshot", action="store_true", default=None,
                        help="Exit once the end of the file is reached")
    parser.add_argument("--field", action="append", type=_parse_field, default=[],
                        metavar="NAME=VALUE", help="Custom field added to every event")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--stats-interval", type=float, default=None)
    parser.add_argument("--poll-interval", type=float, default=None)
    parser.add_argument("--output", choices=OUTPUTS, default=None)
    parser.add_argument("--output-file", default=None)
    parser.add_argument("--server", default=None, help="EveBox server URL (implies --output http)")
    parser.add_argument("--username", default=None)
    parser.add_argument("--password", default=None)
    parser.add_argument("--no-verify-tls", action="store_true", default=False)
    parser.add_argument("--no-watch", action="store_true", default=False,
                        help="Poll only, without filesystem notifications")
    parser.add_argument("-v", "--verbose", action="store_true", default=False)
    return parser


def _from_args(args: argparse.Namespace) -> dict:
    kwargs: dict = {}
    if args.input_file is not None:
        kwargs["input_file"] = args.input_file
    if args.bookmark_directory is not None:
        kwargs["bookmark_directory"] = args.bookmark_directory
    if args.end is not None:
        kwargs["end"] = args.end
    if args.no_bookmark:
        kwargs["bookmark"] = False
    if args.oneshot is not None:
        kwargs["oneshot"] = args.oneshot
    if args.batch_size is not None:
        kwargs["batch_size"] = args.batch_size
    if args.stats_interval is not None:
        kwargs["stats_interval"] = args.stats_interval
    if args.poll_interval is not None:
        kwargs["poll_interval"] = args.poll_interval
    if args.server is not None:
        kwargs["server_url"] = args.server
        kwargs["output"] = "http"
    if args.output is not None:
        kwargs["output"] = args.output
    if args.output_file is not None:
        kwargs["output_file"] = args.output_file
        kwargs.setdefault("output", "file")
    if args.username is not None:
        kwargs["server_username"] = args.username
    if args.password is not None:
        kwargs["server_password"] = args.password
    if args.no_verify_tls:
        kwargs["verify_tls"] = False
    if args.no_watch:
        kwargs["watch"] = False
    if args.verbose:
        kwargs["verbose"] = True
    return kwargs


def validate(config: Config) -> Config:
    if not config.input_file:
        raise ConfigError("No input file provided")
    if config.output not in OUTPUTS:
        raise ConfigError(f"Unknown output {config.output!r}, expected one of {OUTPUTS}")
    if config.output == "http" and not config.server_url:
        raise ConfigError("No server URL provided for http output")
    if config.output == "file" and not config.output_file:
        raise ConfigError("No output file provided for file output")
    if config.batch_size < 1:
        raise ConfigError("batch_size must be at least 1")
    return config


def load_config(argv: list[str] | None = None) -> Config:
    """Build a validated Config. Pass argv for testability."""
    args = build_cli_parser().parse_args(argv)

    kwargs = _from_env()
    kwargs.update(_from_yaml(load_yaml_config(args.config)))
    cli = _from_args(args)

    custom_fields = dict(kwargs.get("custom_fields", {}))
    custom_fields.update(dict(args.field))
    kwargs.update(cli)
    if custom_fields:
        kwargs["custom_fields"] = custom_fields

    if "server_url" in kwargs and "output" not in kwargs:
        kwargs["output"] = "http"

    return validate(Config(**kwargs))
