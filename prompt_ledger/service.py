"""
Boundary service.

One object exposing every operation the dashboard and CLI consume. The
stores are constructed once per process and passed in by reference.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ._logging import get_logger
from .config.loader import Config, ConfigStore, parse_retention
from .core.analytics import DEFAULT_WINDOW_DAYS, AnalyticsSnapshot, filter_records, summarize
from .core.errors import NotFound, ValidationFailure
from .core.export import EXPORT_KINDS, export_config, export_records, export_templates, matches_log_filter
from .core.renderer import builtin_bindings, render
from .sdk.executor import DEFAULT_TIMEOUT_S, ModelExecutor, PromptRunner, RunOutcome
from .sdk.providers import executor_for_model
from .storage.ledger import SQLiteUsageLedger
from .storage.models import LedgerQuery, Template, TemplateSummary, UsageRecord
from .storage.seed import seed_examples
from .storage.templates import FileSystemTemplateBackend, TemplateStore

logger = get_logger("PromptLedger.Service")

WORKSPACE_ENV_VAR = "PROMPT_LEDGER_HOME"
DEFAULT_WORKSPACE = "easyai"
PLAYGROUND_REF = "playground-test"


def default_workspace_root() -> Path:
    """Workspace from PROMPT_LEDGER_HOME, else ./easyai."""
    return Path(os.environ.get(WORKSPACE_ENV_VAR) or DEFAULT_WORKSPACE)


@dataclass(frozen=True)
class Workspace:
    """On-disk layout of a Prompt Ledger workspace."""
    root: Path

    @property
    def prompts_dir(self) -> Path:
        return self.root / "prompts"

    @property
    def ledger_path(self) -> Path:
        return self.root / "logs" / "ledger.db"

    @property
    def settings_path(self) -> Path:
        return self.root / "config" / "settings.yaml"

    @property
    def secrets_path(self) -> Path:
        return self.root / "config" / "secrets.yaml"

    def exists(self) -> bool:
        return self.root.is_dir()

    def config_store(self) -> ConfigStore:
        return ConfigStore(self.settings_path, self.secrets_path)

    def template_store(self) -> TemplateStore:
        return TemplateStore(FileSystemTemplateBackend(self.prompts_dir))

    def open(self, timeout_s: float = DEFAULT_TIMEOUT_S) -> "PromptLedgerService":
        """Construct the service over this workspace's stores.

        Raises:
            ValidationFailure: If the workspace has not been initialized
        """
        if not self.exists():
            raise ValidationFailure(
                f"Workspace not initialized at {self.root}. Run 'prompt-ledger init' first."
            )
        return PromptLedgerService(
            templates=self.template_store(),
            ledger=SQLiteUsageLedger(str(self.ledger_path)),
            config=self.config_store(),
            timeout_s=timeout_s,
        )


def detect_key_provider(api_key: str) -> str:
    """Secret name an API key belongs to, judged by its prefix."""
    if api_key.startswith("sk-ant-"):
        return "ANTHROPIC_API_KEY"
    return "OPENAI_API_KEY"


def initialize_workspace(workspace: Workspace, api_key: Optional[str] = None, force: bool = False) -> str:
    """Create the workspace tree, default config and example templates.

    An existing workspace is only touched when force is set, or when an
    api_key is given, in which case only that key is updated.

    Returns:
        'created', 'reinitialized' or 'key-updated'

    Raises:
        ValidationFailure: If the workspace exists and neither force nor
            api_key was given
    """
    outcome = "created"
    if workspace.exists():
        if not force:
            if api_key:
                workspace.config_store().write(secrets={detect_key_provider(api_key): api_key})
                return "key-updated"
            raise ValidationFailure(f"Workspace already initialized at {workspace.root}")
        outcome = "reinitialized"

    for directory in ("custom", "examples"):
        (workspace.prompts_dir / directory).mkdir(parents=True, exist_ok=True)
    workspace.ledger_path.parent.mkdir(parents=True, exist_ok=True)

    config = workspace.config_store()
    config.initialize(force=force)
    if api_key:
        config.write(secrets={detect_key_provider(api_key): api_key})

    seed_examples(workspace.template_store())
    SQLiteUsageLedger(str(workspace.ledger_path))
    logger.info("Initialized workspace at %s", workspace.root)
    return outcome


class PromptLedgerService:
    """Templates, usage ledger, analytics, execution and config in one surface."""

    def __init__(
        self,
        templates: TemplateStore,
        ledger,
        config: ConfigStore,
        executor_factory: Optional[Callable[[str], ModelExecutor]] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        """Initialize the service.

        Args:
            templates: Template store
            ledger: InMemoryUsageLedger or SQLiteUsageLedger
            config: Config store
            executor_factory: Maps a model identifier to an executor;
                defaults to the hosted providers keyed by the stored secrets
            timeout_s: Executor timeout in seconds
        """
        self.templates = templates
        self.ledger = ledger
        self.config = config
        if executor_factory is None:
            executor_factory = self._hosted_executor
        self.runner = PromptRunner(ledger, executor_factory, config, timeout_s=timeout_s)

    def _hosted_executor(self, model: str) -> ModelExecutor:
        return executor_for_model(model, self.config.raw_secrets())

    # Templates

    def list_templates(self, category: Optional[str] = None, search: Optional[str] = None) -> List[TemplateSummary]:
        return self.templates.list(category=category, search=search)

    def get_template(self, category: str, name: str) -> Template:
        return self.templates.get(category, name)

    def put_template(self, category: str, name: str, content: str) -> None:
        self.templates.put(category, name, content)

    def delete_template(self, category: str, name: str) -> None:
        self.templates.delete(category, name)

    def render_template(self, category: str, name: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        """Render a stored template; `date` and `time` are bound unless overridden."""
        template = self.templates.get(category, name)
        bindings = {**builtin_bindings(), **(variables or {})}
        return render(template.content, bindings)

    # Ledger and analytics

    def list_usage(self, search: Optional[str] = None, status: str = "all", limit: int = 50) -> List[UsageRecord]:
        return self.ledger.query(LedgerQuery(search=search or None, status=status, limit=limit))

    def analytics(self, window_days: int = DEFAULT_WINDOW_DAYS) -> AnalyticsSnapshot:
        return summarize(self.ledger.records(), window_days=window_days)

    def prune_expired(self, now=None) -> int:
        """Apply the logging.retention window to the ledger."""
        now = now or datetime.now(timezone.utc)
        retention = self.config.read().settings["logging"]["retention"]
        return self.ledger.prune(now - parse_retention(retention))

    # Execution

    def execute(
        self,
        prompt: str,
        model: str,
        variables: Optional[Mapping[str, Any]] = None,
        prompt_ref: Optional[str] = PLAYGROUND_REF,
    ) -> RunOutcome:
        """Render ad-hoc prompt text with variables, run it, record the outcome."""
        rendered = render(prompt, variables or {})
        return self.runner.execute(rendered, model, prompt_ref=prompt_ref)

    def compare(
        self,
        prompt: str,
        models: Sequence[str],
        variables: Optional[Mapping[str, Any]] = None,
        prompt_ref: Optional[str] = PLAYGROUND_REF,
    ) -> List[RunOutcome]:
        """Run one prompt against several models side by side.

        Calls run concurrently; each is bounded by the runner's timeout and
        recorded as its own usage record. Outcomes follow the order of
        `models`, with blanks and repeats dropped.

        Raises:
            ValidationFailure: If no model is given
        """
        selected = list(dict.fromkeys(m.strip() for m in models if m and m.strip()))
        if not selected:
            raise ValidationFailure("No models selected")
        rendered = render(prompt, variables or {})
        with ThreadPoolExecutor(max_workers=len(selected)) as pool:
            return list(pool.map(
                lambda model: self.runner.execute(rendered, model, prompt_ref=prompt_ref),
                selected,
            ))

    def run_template(
        self,
        name: str,
        model: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
        category: Optional[str] = None,
    ) -> RunOutcome:
        """Resolve, render and run a stored template.

        Without a category the name is looked up in custom, then examples.
        Without a model the configured default model is used.
        """
        if category:
            template = self.templates.get(category, name)
        else:
            template = self.templates.resolve(name)
        model = model or self.config.read().settings["models"]["default"]
        bindings = {**builtin_bindings(), **(variables or {})}
        rendered = render(template.content, bindings)
        return self.runner.execute(rendered, model, prompt_ref=template.name)

    # Config

    def read_config(self) -> Config:
        return self.config.read()

    def write_config(self, settings: Optional[Dict[str, Any]] = None, secrets: Optional[Dict[str, str]] = None) -> None:
        self.config.write(settings=settings, secrets=secrets)

    # Export

    def export_data(
        self,
        kind: str,
        fmt: str = "json",
        filter_text: Optional[str] = None,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[str, int]:
        """Render logs, prompts or config for export.

        Args:
            kind: 'logs', 'prompts' or 'config'
            fmt: 'json', 'jsonl' or 'csv'
            filter_text: Log or prompt free-text filter
            period: Trailing period for logs (see filter_records)
            now: Reference time for the period cutoff

        Returns:
            Tuple of (exported text, number of items exported)

        Raises:
            ValidationFailure: On an unknown kind or format
            NotFound: If there are no logs or prompts to export
        """
        kind = kind.lower()
        if kind == "logs":
            records = filter_records(self.ledger.records(), period=period, now=now)
            if filter_text:
                records = [r for r in records if matches_log_filter(r, filter_text)]
            if not records:
                raise NotFound("No usage records match the export filters")
            return export_records(records, fmt), len(records)
        if kind == "prompts":
            templates = self.templates.templates(search=filter_text)
            if not templates:
                raise NotFound("No prompts found to export")
            return export_templates(templates, fmt), len(templates)
        if kind == "config":
            return export_config(self.config.read().to_dict(), fmt), 1
        raise ValidationFailure(
            f"Unsupported export type: {kind}. Use {', '.join(repr(k) for k in EXPORT_KINDS)}"
        )
