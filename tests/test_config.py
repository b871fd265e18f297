"""Tests for configuration loading."""

import re
from pathlib import Path

import pytest
from pydantic import ValidationError

from prerender.config import (
    DEFAULT_CRAWLER_USER_AGENTS,
    DEFAULT_SERVICE_URL,
    OutboundProxy,
    PrerenderConfig,
    find_config_file,
    get_config,
    load_config,
    set_config_instance,
)


class TestPrerenderConfig:
    """Tests for PrerenderConfig fields and derived values."""

    def test_defaults(self) -> None:
        config = PrerenderConfig()
        assert config.service_url == DEFAULT_SERVICE_URL
        assert config.token is None
        assert config.whitelist is None
        assert config.blacklist is None
        assert config.intercept_by_default is True
        assert config.timeout == 100.0
        assert config.mitm.port == 8080

    def test_user_agents_union_and_lowercase(self) -> None:
        """Configured agents are added to the defaults and lowercased."""
        config = PrerenderConfig(crawler_user_agents=["GoogleBot"])
        assert "googlebot" in config.user_agents
        assert set(DEFAULT_CRAWLER_USER_AGENTS) <= set(config.user_agents)

    def test_user_agents_without_defaults(self) -> None:
        config = PrerenderConfig(use_default_user_agents=False, crawler_user_agents=["MyBot"])
        assert config.user_agents == ("mybot",)

    def test_ignored_extensions_without_defaults(self) -> None:
        config = PrerenderConfig(use_default_extensions_to_ignore=False, extensions_to_ignore=[".JSON"])
        assert config.ignored_extensions == (".json",)

    def test_patterns_compiled(self) -> None:
        config = PrerenderConfig(whitelist=["^https://example\\.com/blog/"], blacklist="/admin")
        assert isinstance(config.whitelist[0], re.Pattern)
        assert [p.pattern for p in config.blacklist] == ["/admin"]

    def test_invalid_pattern_fails_at_load(self) -> None:
        """A broken regex is a configuration error, not a per-request one."""
        with pytest.raises(ValidationError, match="invalid pattern"):
            PrerenderConfig(blacklist=["(unclosed"])

    def test_frozen(self) -> None:
        config = PrerenderConfig()
        with pytest.raises(ValidationError):
            config.token = "changed"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRERENDER_TOKEN", "from-env")
        monkeypatch.setenv("PRERENDER_MITM__PORT", "9000")
        config = PrerenderConfig()
        assert config.token == "from-env"
        assert config.mitm.port == 9000


class TestOutboundProxy:
    """Tests for outbound proxy address construction."""

    def test_host_only(self) -> None:
        assert OutboundProxy(url="proxy.internal", port=3128).address == "http://proxy.internal:3128"

    def test_with_scheme(self) -> None:
        assert OutboundProxy(url="http://proxy.internal/").address == "http://proxy.internal:80"

    @pytest.mark.parametrize("url", ["http://proxy.internal:3128", "proxy.internal:3128", "http://proxy.internal:3128/"])
    def test_url_with_port(self, url: str) -> None:
        """A port in the URL wins over the port field."""
        assert OutboundProxy(url=url, port=8080).address == "http://proxy.internal:3128"

    def test_blank_url(self) -> None:
        assert OutboundProxy(url="  ").address is None

    def test_config_proxy_address(self) -> None:
        assert PrerenderConfig().proxy_address is None
        config = PrerenderConfig(proxy={"url": "proxy.internal", "port": 8888})
        assert config.proxy_address == "http://proxy.internal:8888"


class TestFromYaml:
    """Tests for loading prerender.yaml."""

    def test_loads_section(self, tmp_path: Path) -> None:
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text(
            "prerender:\n"
            "  token: yaml-token\n"
            "  headers_to_exclude: [Set-Cookie]\n"
            "  whitelist:\n"
            "    - '^https://example\\.com/'\n"
        )
        config = PrerenderConfig.from_yaml(yaml_path)
        assert config.token == "yaml-token"
        assert config.headers_to_exclude == ["Set-Cookie"]
        assert config.whitelist[0].search("https://example.com/x")
        assert config.config_path == yaml_path

    def test_yaml_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRERENDER_TOKEN", "from-env")
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  token: from-yaml\n")
        assert PrerenderConfig.from_yaml(yaml_path).token == "from-yaml"

    def test_kwargs_win_over_yaml(self, tmp_path: Path) -> None:
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  token: from-yaml\n")
        assert PrerenderConfig.from_yaml(yaml_path, token="explicit").token == "explicit"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = PrerenderConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.service_url == DEFAULT_SERVICE_URL

    def test_null_values_left_to_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRERENDER_TOKEN", "from-env")
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  token: null\n  timeout: 5\n")

        config = PrerenderConfig.from_yaml(yaml_path)

        assert config.token == "from-env"
        assert config.timeout == 5.0

    def test_empty_section(self, tmp_path: Path) -> None:
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  # token: secret\n")
        assert PrerenderConfig.from_yaml(yaml_path).token is None

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  - token\n")
        with pytest.raises(ValueError, match="must be a mapping"):
            PrerenderConfig.from_yaml(yaml_path)

    def test_deprecated_strip_key(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        yaml_path = tmp_path / "prerender.yaml"
        yaml_path.write_text("prerender:\n  strip_application_name_from_request_url: true\n")
        config = PrerenderConfig.from_yaml(yaml_path)
        assert config.strip_application_path is True
        assert "DEPRECATED" in caplog.text


class TestDiscovery:
    """Tests for config file discovery and the global instance."""

    def test_explicit_dir(self, tmp_path: Path) -> None:
        (tmp_path / "prerender.yaml").write_text("prerender: {}\n")
        assert find_config_file(tmp_path) == tmp_path / "prerender.yaml"

    def test_env_dir_before_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_dir = tmp_path / "env"
        env_dir.mkdir()
        (env_dir / "prerender.yaml").write_text("prerender:\n  token: env-dir\n")
        home_dir = tmp_path / "home" / ".prerender"
        home_dir.mkdir(parents=True)
        (home_dir / "prerender.yaml").write_text("prerender:\n  token: home-dir\n")

        monkeypatch.setenv("PRERENDER_CONFIG_DIR", str(env_dir))
        assert load_config().token == "env-dir"

        monkeypatch.delenv("PRERENDER_CONFIG_DIR")
        assert load_config().token == "home-dir"

    def test_no_file(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None
        assert load_config(tmp_path).config_path is None

    def test_get_config_is_cached(self) -> None:
        first = get_config()
        assert get_config() is first

    def test_set_config_instance(self) -> None:
        config = PrerenderConfig(token="injected")
        set_config_instance(config)
        assert get_config() is config
