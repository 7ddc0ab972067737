"""Load and validate the optional YAML settings file."""
from __future__ import annotations

import datetime

import yaml

from zsm.models import (
    CleanupOptions,
    PropertyNames,
    S3Options,
    SendOptions,
    Settings,
)


class ConfigError(Exception):
    pass


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _bool(raw: dict, key: str, default: bool, where: str = "") -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}{key} must be true or false, got {value!r}")
    return value


def _str(raw: dict, key: str, default: str | None, where: str = "") -> str | None:
    value = raw.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where}{key} must be a non-empty string, got {value!r}")
    return value


def _check_keys(raw: dict, allowed: set[str], where: str = "") -> None:
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ConfigError(f"Unknown setting(s) in {where or 'config'}: {', '.join(unknown)}")


def parse_settings(raw: dict | None) -> Settings:
    """Build Settings from a parsed YAML mapping; missing keys keep defaults."""
    if raw is None:
        return Settings()
    if not isinstance(raw, dict):
        raise ConfigError("Config must be a YAML mapping")
    _check_keys(raw, {
        "strict", "progress", "color", "syslog",
        "properties", "send", "s3", "cleanup", "snapshot",
    })
    defaults = Settings()

    # --- properties ---
    props_raw = _section(raw, "properties")
    _check_keys(props_raw, {"replication_target", "aws_bucket", "auto_snapshot"}, "properties")
    names = PropertyNames()
    properties = PropertyNames(
        replication_target=_str(props_raw, "replication_target", names.replication_target, "properties."),
        aws_bucket=_str(props_raw, "aws_bucket", names.aws_bucket, "properties."),
        auto_snapshot=_str(props_raw, "auto_snapshot", names.auto_snapshot, "properties."),
    )
    for prop in (properties.replication_target, properties.aws_bucket, properties.auto_snapshot):
        # zfs user properties must contain a ':' (module:property)
        if ":" not in prop:
            raise ConfigError(f"ZFS user property must contain ':', got {prop!r}")

    # --- send ---
    send_raw = _section(raw, "send")
    _check_keys(send_raw, {"raw", "compressed", "properties"}, "send")
    send = SendOptions(
        raw=_bool(send_raw, "raw", True, "send."),
        compressed=_bool(send_raw, "compressed", True, "send."),
        properties=_bool(send_raw, "properties", True, "send."),
    )

    # --- s3 ---
    s3_raw = _section(raw, "s3")
    _check_keys(s3_raw, {
        "region", "profile", "endpoint_url", "storage_class",
        "tag_key", "incremental_base_suffix",
    }, "s3")
    s3 = S3Options(
        region=_str(s3_raw, "region", None, "s3."),
        profile=_str(s3_raw, "profile", None, "s3."),
        endpoint_url=_str(s3_raw, "endpoint_url", None, "s3."),
        storage_class=_str(s3_raw, "storage_class", None, "s3."),
        tag_key=_str(s3_raw, "tag_key", S3Options.tag_key, "s3."),
        incremental_base_suffix=_bool(s3_raw, "incremental_base_suffix", False, "s3."),
    )

    # --- cleanup ---
    cleanup_raw = _section(raw, "cleanup")
    _check_keys(cleanup_raw, {"skip_days"}, "cleanup")
    skip_days = cleanup_raw.get("skip_days", CleanupOptions.skip_days)
    if not isinstance(skip_days, int) or isinstance(skip_days, bool) or skip_days < 0:
        raise ConfigError(f"cleanup.skip_days must be an integer >= 0, got {skip_days!r}")

    # --- snapshot ---
    snap_raw = _section(raw, "snapshot")
    _check_keys(snap_raw, {"label_format"}, "snapshot")
    label_format = _str(snap_raw, "label_format", defaults.snapshot_label_format, "snapshot.")
    label = datetime.datetime(2000, 1, 1).strftime(label_format)
    if "@" in label or "/" in label:
        raise ConfigError(f"snapshot.label_format yields an invalid label: {label!r}")

    return Settings(
        strict=_bool(raw, "strict", defaults.strict),
        progress=_bool(raw, "progress", defaults.progress),
        color=_bool(raw, "color", defaults.color),
        syslog=_bool(raw, "syslog", defaults.syslog),
        snapshot_label_format=label_format,
        properties=properties,
        send=send,
        s3=s3,
        cleanup=CleanupOptions(skip_days=skip_days),
    )


def load_settings(path: str | None) -> Settings:
    """Load settings from `path`, or return defaults when no path is given."""
    if path is None:
        return Settings()
    with open(path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    try:
        return parse_settings(raw)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e
