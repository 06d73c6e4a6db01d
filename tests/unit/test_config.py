"""Tests for task-master.yaml loading."""
import pytest

from claude_task_master.config import ConfigError, TaskMasterConfig, load_config


def write_config(project_dir, text):
    path = project_dir / "task-master.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, project_dir):
        config = load_config(project_dir=str(project_dir))

        assert config.project_dir == str(project_dir.absolute())
        assert config.state_dir == ".claude-task-master"
        assert config.claude.binary == "claude"
        assert config.claude.model == "sonnet"
        assert config.claude.timeout_seconds == 3600
        assert config.claude.allowed_tools is None
        assert config.loop.max_sessions is None
        assert config.loop.sleep_seconds == 2.0
        assert config.github.binary == "gh"
        assert config.logging.enabled is True

    def test_paths(self, project_dir):
        config = load_config(project_dir=str(project_dir))
        assert config.state_path == project_dir.absolute() / ".claude-task-master"
        assert config.logs_path == config.state_path / "logs"

    def test_loads_sections(self, project_dir):
        write_config(project_dir, """
claude:
  model: opus
  timeout_seconds: 120
  allowed_tools: [Read, Edit]
loop:
  no_merge: true
  max_sessions: 4
  pause_on_pr: true
github:
  ci_wait_timeout_seconds: 60
logging:
  level: debug
""")
        config = load_config(project_dir=str(project_dir))

        assert config.claude.model == "opus"
        assert config.claude.timeout_seconds == 120
        assert config.claude.allowed_tools == ["Read", "Edit"]
        assert config.loop.no_merge is True
        assert config.loop.max_sessions == 4
        assert config.loop.pause_on_pr is True
        assert config.github.ci_wait_timeout_seconds == 60
        assert config.logging.level == "debug"

    def test_empty_file_gives_defaults(self, project_dir):
        write_config(project_dir, "")
        assert load_config(project_dir=str(project_dir)).claude.model == "sonnet"

    def test_env_var_substitution(self, project_dir, monkeypatch):
        monkeypatch.setenv("TM_MODEL", "haiku")
        write_config(project_dir, "claude:\n  model: ${TM_MODEL}\n")
        assert load_config(project_dir=str(project_dir)).claude.model == "haiku"

    def test_missing_env_var(self, project_dir, monkeypatch):
        monkeypatch.delenv("TM_UNSET_VAR", raising=False)
        write_config(project_dir, "claude:\n  binary: ${TM_UNSET_VAR}\n")
        with pytest.raises(ConfigError, match="TM_UNSET_VAR"):
            load_config(project_dir=str(project_dir))

    def test_explicit_path(self, project_dir, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("claude:\n  model: opus\n")
        config = load_config(config_path=str(path), project_dir=str(project_dir))
        assert config.claude.model == "opus"

    def test_explicit_missing_path(self, project_dir):
        with pytest.raises(ConfigError, match="not found"):
            load_config(config_path=str(project_dir / "nope.yaml"))

    def test_invalid_yaml(self, project_dir):
        write_config(project_dir, "claude: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(project_dir=str(project_dir))

    def test_non_mapping(self, project_dir):
        write_config(project_dir, "- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(project_dir=str(project_dir))

    @pytest.mark.parametrize("value", ["0", "-1", "two"])
    def test_invalid_max_sessions(self, project_dir, value):
        write_config(project_dir, f"loop:\n  max_sessions: {value}\n")
        with pytest.raises(ConfigError, match="max_sessions"):
            load_config(project_dir=str(project_dir))

    def test_allowed_tools_must_be_list(self, project_dir):
        write_config(project_dir, "claude:\n  allowed_tools: Read\n")
        with pytest.raises(ConfigError, match="allowed_tools"):
            load_config(project_dir=str(project_dir))


class TestTaskMasterConfig:
    def test_project_dir_made_absolute(self):
        assert TaskMasterConfig(project_dir=".").project_path.is_absolute()
