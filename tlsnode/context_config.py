"""Loading of TLS certificate settings from an INI configuration file."""

from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass, field

_log = logging.getLogger(__name__)

SM_SSL = "sm_ssl"


class ConfigError(RuntimeError):
    """Raised when the TLS configuration cannot be loaded."""


@dataclass
class CertConfig:
    """Certificate files (or contents) for a standard TLS connection."""

    ca_cert: str = ""
    node_key: str = ""
    node_cert: str = ""


@dataclass
class SMCertConfig:
    """Certificate files (or contents) for an SM (dual certificate) TLS connection."""

    ca_cert: str = ""
    node_cert: str = ""
    node_key: str = ""
    en_node_cert: str = ""
    en_node_key: str = ""


def _read_ini(config_path: str) -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # keys are case sensitive
    with open(config_path, encoding="utf-8") as handle:
        parser.read_file(handle)
    return parser


@dataclass
class ContextConfig:
    """TLS context settings: SSL type and the certificates to use."""

    is_cert_path: bool = True
    ssl_type: str = ""
    cert_config: CertConfig = field(default_factory=CertConfig)
    sm_cert_config: SMCertConfig = field(default_factory=SMCertConfig)
    module_name: str = "DEFAULT"

    def init_config(self, config_path: str) -> None:
        """Load the settings from the INI file at ``config_path``."""
        try:
            parser = _read_ini(config_path)
            ssl_type = parser.get("common", "ssl_type", fallback="ssl")
            if ssl_type != SM_SSL:
                self.init_cert_config(parser)
            else:
                self.init_sm_cert_config(parser)
            self.ssl_type = ssl_type
        except (OSError, configparser.Error, ConfigError, ValueError) as exc:
            current_path = os.getcwd()
            _log.warning(
                "[%s][CTX] initConfig failed configPath=%s currentPath=%s error=%s",
                self.module_name,
                config_path,
                current_path,
                exc,
            )
            raise ConfigError(
                f"initConfig: currentPath:{current_path} ,error:{exc}"
            ) from exc

        _log.info(
            "[%s][CTX] initConfig sslType=%s configPath=%s",
            self.module_name,
            self.ssl_type,
            config_path,
        )

    def init_cert_config(self, parser: configparser.ConfigParser) -> None:
        """Fill ``cert_config`` from the ``[cert]`` section of ``parser``."""
        ca_path = parser.get("cert", "ca_path", fallback="./")
        ca_cert = ca_path + "/" + parser.get("cert", "ca_cert", fallback="ca.crt")
        node_cert = ca_path + "/" + parser.get("cert", "node_cert", fallback="node.crt")
        node_key = ca_path + "/" + parser.get("cert", "node_key", fallback="node.key")

        _log.info(
            "[%s][CTX] initCertConfig ca_path=%s ca_cert=%s node_cert=%s node_key=%s",
            self.module_name,
            ca_path,
            ca_cert,
            node_cert,
            node_key,
        )

        for path in (ca_cert, node_cert, node_key):
            self.check_file_exist(path)

        self.cert_config = CertConfig(ca_cert=ca_cert, node_key=node_key, node_cert=node_cert)

    def init_sm_cert_config(self, parser: configparser.ConfigParser) -> None:
        """Fill ``sm_cert_config`` from the ``[cert]`` section of ``parser``."""
        ca_path = parser.get("cert", "ca_path", fallback="./")

        def _file(key: str, default: str) -> str:
            return ca_path + "/" + parser.get("cert", key, fallback=default)

        sm_config = SMCertConfig(
            ca_cert=_file("sm_ca_cert", "sm_ca.crt"),
            node_cert=_file("sm_node_cert", "sm_node.crt"),
            node_key=_file("sm_node_key", "sm_node.key"),
            en_node_cert=_file("sm_ennode_cert", "sm_ennode.crt"),
            en_node_key=_file("sm_ennode_key", "sm_ennode.key"),
        )

        for path in (
            sm_config.ca_cert,
            sm_config.node_cert,
            sm_config.node_key,
            sm_config.en_node_cert,
            sm_config.en_node_key,
        ):
            self.check_file_exist(path)

        self.sm_cert_config = sm_config

        _log.info("[%s][CTX] initSMCertConfig ca_path=%s config=%s", self.module_name, ca_path, sm_config)

    def check_file_exist(self, path: str) -> None:
        """Raise :class:`ConfigError` if ``path`` does not exist."""
        if not os.path.exists(path):
            raise ConfigError(f"file not exist: {path}")