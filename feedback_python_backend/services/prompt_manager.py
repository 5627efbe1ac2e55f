"""
Prompt Manager Service

Loads the oracle prompt for each pipeline stage from prompts.json and renders
it with string.Template substitution. The file is re-read when its mtime
changes, so prompt edits apply without a restart.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Every stage that calls the oracle needs its prompt present
REQUIRED_PROMPTS = ("session_analysis", "signal_clustering", "survey_analysis", "narrative_report")


@dataclass(frozen=True)
class RenderedPrompt:
    system: str
    user: str


class PromptManager:
    """
    Stage prompts for the oracle.

    Each entry under "prompts" carries a system instruction and a user
    template; narrative_report also carries per-audience guidance.
    """

    def __init__(self, prompts_file: str = "prompts.json", required: tuple = ()):
        self.prompts_file = Path(prompts_file)
        self.required = tuple(required)

        self._prompts: Dict[str, Dict[str, Any]] = {}
        self._file_mtime: Optional[float] = None

        self.reload()

    def reload(self) -> None:
        if not self.prompts_file.exists():
            raise FileNotFoundError(f"Prompts file not found: {self.prompts_file}")

        with open(self.prompts_file, 'r') as f:
            prompts = json.load(f).get("prompts", {})

        missing = [name for name in self.required if name not in prompts]
        if missing:
            raise ValueError(f"Prompts file {self.prompts_file} is missing prompts: {missing}")

        self._prompts = prompts
        self._file_mtime = self.prompts_file.stat().st_mtime
        logger.info("[prompts] loaded %s prompts from %s", len(prompts), self.prompts_file)

    def _check_reload(self) -> None:
        if self.prompts_file.exists() and self.prompts_file.stat().st_mtime != self._file_mtime:
            self.reload()

    def get_prompt(self, prompt_name: str) -> Dict[str, Any]:
        """
        Raw configuration of one prompt.

        Raises:
            KeyError: If prompt not found
        """
        self._check_reload()

        if prompt_name not in self._prompts:
            raise KeyError(f"Prompt not found: {prompt_name}")

        return dict(self._prompts[prompt_name])

    def render(self, prompt_name: str, variables: Dict[str, Any]) -> RenderedPrompt:
        """
        System instruction and rendered user prompt for one oracle call.

        Raises:
            KeyError: If prompt not found
            ValueError: If the template references a variable not supplied
        """
        prompt_config = self.get_prompt(prompt_name)
        template = Template(prompt_config.get("template", ""))

        try:
            user = template.substitute(variables)
        except KeyError as e:
            missing_var = str(e).strip("'")
            raise ValueError(
                f"Missing required variable '{missing_var}' for prompt '{prompt_name}'"
            )

        return RenderedPrompt(system=prompt_config.get("system", ""), user=user)

    def audience_guidance(self, audience: str) -> str:
        guidance = self.get_prompt("narrative_report").get("audience_guidance", {})
        if audience not in guidance:
            raise KeyError(f"No narrative guidance for audience: {audience}")
        return guidance[audience]

    def list_prompts(self) -> List[str]:
        self._check_reload()
        return list(self._prompts)


_prompt_manager_instance: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    """Process-wide PromptManager over the packaged prompts.json."""
    global _prompt_manager_instance

    if _prompt_manager_instance is None:
        prompts_file = Path(__file__).parent.parent / "prompts.json"
        _prompt_manager_instance = PromptManager(str(prompts_file), required=REQUIRED_PROMPTS)

    return _prompt_manager_instance
