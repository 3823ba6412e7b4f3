"""Supported coding agents and where each one reads skills from.

Directory conventions differ between agents, so everything is looked up
in AGENTS rather than derived from the agent name.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class AgentConfig:
    """Skill directory conventions of one agent.

    Attributes:
        name: Agent identifier used on the command line and in skills.yaml
        display_name: Human-readable name
        skills_dir: Project-level skills directory, relative to the project root
        global_skills_dir: User-level skills directory, relative to the home directory
        home_markers: Paths under home whose presence means the agent is installed
        project_markers: Paths under the project root with the same meaning
    """

    name: str
    display_name: str
    skills_dir: str
    global_skills_dir: str
    home_markers: tuple[str, ...] = ()
    project_markers: tuple[str, ...] = ()


AGENTS: dict[str, AgentConfig] = {
    agent.name: agent
    for agent in (
        AgentConfig("amp", "Amp", ".agents/skills", ".config/agents/skills", (".config/amp",)),
        AgentConfig(
            "antigravity",
            "Antigravity",
            ".agent/skills",
            ".gemini/antigravity/skills",
            (".gemini/antigravity",),
            (".agent",),
        ),
        AgentConfig("claude-code", "Claude Code", ".claude/skills", ".claude/skills", (".claude",)),
        AgentConfig("clawdbot", "Clawdbot", "skills", ".clawdbot/skills", (".clawdbot",)),
        AgentConfig("codex", "Codex", ".codex/skills", ".codex/skills", (".codex",)),
        AgentConfig("cursor", "Cursor", ".cursor/skills", ".cursor/skills", (".cursor",)),
        AgentConfig("droid", "Droid", ".factory/skills", ".factory/skills", (".factory/skills",)),
        AgentConfig("gemini-cli", "Gemini CLI", ".gemini/skills", ".gemini/skills", (".gemini",)),
        AgentConfig(
            "github-copilot",
            "GitHub Copilot",
            ".github/skills",
            ".copilot/skills",
            (".copilot",),
            (".github",),
        ),
        AgentConfig("goose", "Goose", ".goose/skills", ".config/goose/skills", (".config/goose",)),
        AgentConfig("kilo", "Kilo Code", ".kilocode/skills", ".kilocode/skills", (".kilocode",)),
        AgentConfig("kiro-cli", "Kiro CLI", ".kiro/skills", ".kiro/skills", (".kiro",)),
        AgentConfig(
            "opencode",
            "OpenCode",
            ".opencode/skills",
            ".config/opencode/skills",
            (".config/opencode", ".claude/skills"),
        ),
        AgentConfig("roo", "Roo Code", ".roo/skills", ".roo/skills", (".roo",)),
        AgentConfig("trae", "Trae", ".trae/skills", ".trae/skills", (".trae",)),
        AgentConfig(
            "windsurf", "Windsurf", ".windsurf/skills", ".codeium/windsurf/skills", (".codeium/windsurf",)
        ),
        AgentConfig("neovate", "Neovate", ".neovate/skills", ".neovate/skills", (".neovate",)),
    )
}


def get_all_agent_types() -> list[str]:
    """Get all supported agent names."""
    return list(AGENTS)


def is_valid_agent_type(name: str) -> bool:
    """Check whether an agent name is supported."""
    return name in AGENTS


def get_agent_config(name: str) -> Optional[AgentConfig]:
    """Get an agent's configuration, or None if it is unknown."""
    return AGENTS.get(name)


def get_agent_skills_dir(
    name: str,
    is_global: bool = False,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Path:
    """Get the skills directory an agent reads from.

    Args:
        name: Agent name
        is_global: Use the user-level directory instead of the project one
        cwd: Project root (defaults to the current directory)
        home: Home directory (defaults to the user's home)

    Raises:
        KeyError: If the agent is unknown
    """
    agent = AGENTS[name]
    if is_global:
        return Path(home or Path.home()) / agent.global_skills_dir
    return Path(cwd or Path.cwd()) / agent.skills_dir


def detect_installed_agents(cwd: Optional[Path] = None, home: Optional[Path] = None) -> list[str]:
    """Detect which agents are present on this machine."""
    cwd = Path(cwd or Path.cwd())
    home = Path(home or Path.home())

    detected = []
    for agent in AGENTS.values():
        markers = [home / m for m in agent.home_markers] + [cwd / m for m in agent.project_markers]
        if any(marker.exists() for marker in markers):
            detected.append(agent.name)
    return detected
