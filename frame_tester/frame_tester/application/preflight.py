from __future__ import annotations

from dataclasses import dataclass

from frame_tester.domain.models import ConnectionConfig, ConnectionRole


_ALL_INTERFACES = {"0.0.0.0", "::", ""}
_PRIVILEGED_PORT_LIMIT = 1024


@dataclass(frozen=True)
class PreflightResult:
    errors: tuple[str, ...]
    warnings: tuple[str, ...]


def _is_port(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def run_preflight(config: ConnectionConfig) -> PreflightResult:
    errors: list[str] = []
    warnings: list[str] = []

    if config.role == ConnectionRole.LISTENER:
        if not config.local_address.strip():
            errors.append("待受アドレスを入力してください。")
        elif config.local_address.strip() in _ALL_INTERFACES:
            warnings.append("すべてのインターフェースで待ち受けます。")

        if not _is_port(config.local_port) or not 0 <= config.local_port <= 65535:
            errors.append("待受ポートは0〜65535で指定してください。")
        elif config.local_port == 0:
            warnings.append("ポート0はOSが空きポートを割り当てます。")
        elif config.local_port < _PRIVILEGED_PORT_LIMIT:
            warnings.append(f"ポート {config.local_port} は管理者権限が必要な場合があります。")
    elif config.role == ConnectionRole.CONNECTOR:
        if not config.remote_address.strip():
            errors.append("接続先アドレスを入力してください。")

        if not _is_port(config.remote_port) or not 1 <= config.remote_port <= 65535:
            errors.append("接続先ポートは1〜65535で指定してください。")
    else:
        errors.append("動作モードは listener / connector のいずれかを選択してください。")

    if config.connect_timeout_sec is not None and config.connect_timeout_sec <= 0:
        errors.append("接続タイムアウトは0より大きい値にしてください。")

    return PreflightResult(errors=tuple(errors), warnings=tuple(warnings))
