"""
Main CLI entry point for the AI validation pipeline.

Usage:
    python src/main.py validate banque.xlsx
    python src/main.py validate banque.xlsx --instructions "Style concis"
    python src/main.py validate banque.xlsx --single --output corrige.xlsx
    python src/main.py status <job_id>
    python src/main.py list
    python src/main.py check
"""

import asyncio
import sys
import argparse
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from config.settings import get_settings
from config.logging_config import setup_structured_logging, get_logger
from core.models import JobStatus
from interaction.live_progress import LiveJobDisplay

logger = get_logger(__name__)


def check_azure_config(console: Console) -> bool:
    """Warn when Azure OpenAI is not usable; the job then runs offline."""
    settings = get_settings()
    if settings.force_offline:
        console.print("[yellow]AZURE_OPENAI_FORCE_OFFLINE actif: aucune analyse IA ne sera faite.[/yellow]")
        return False
    if not settings.is_azure_configured:
        console.print("[yellow]Azure OpenAI non configuré: aucune analyse IA ne sera faite.[/yellow]")
        console.print(
            "Définissez AZURE_OPENAI_API_KEY, AZURE_OPENAI_TARGET (ou AZURE_OPENAI_ENDPOINT) "
            "et AZURE_OPENAI_CHAT_DEPLOYMENT."
        )
        return False
    return True


def validate_workbook_path(path_str: str) -> tuple[bool, str]:
    """
    Validate a workbook path.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not path_str or not path_str.strip():
        return False, "Empty path provided"

    path = Path(path_str)
    if path.suffix.lower() != '.xlsx':
        return False, f"Not an .xlsx file: {path.suffix}"
    if not path.is_file():
        return False, f"File not found: {path_str}"

    return True, ""


def default_output_path(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}_valide.xlsx")


def read_instructions(args) -> Optional[str]:
    if args.instructions_file:
        return Path(args.instructions_file).read_text(encoding='utf-8').strip() or None
    return (args.instructions or "").strip() or None


def _settings_overrides(args) -> dict:
    overrides = {}
    if args.batch_size is not None:
        overrides['batch_size'] = max(1, args.batch_size)
    if args.concurrency is not None:
        overrides['concurrency'] = max(1, args.concurrency)
    if args.single:
        overrides['qcm_single'] = True
    if args.no_retry_pass:
        overrides['retry_pass'] = False
    if args.data_dir:
        overrides['data_dir'] = args.data_dir
    return overrides


async def command_validate(args):
    """Run AI validation on one workbook."""
    from storage.job_store import FileJobStore
    from workbook.pipeline import WorkbookPipeline

    console = Console()

    is_valid, error = validate_workbook_path(args.workbook)
    if not is_valid:
        console.print(f"[red]Erreur: {error}[/red]")
        return 1

    input_path = Path(args.workbook)
    output_path = Path(args.output) if args.output else default_output_path(input_path)
    instructions = read_instructions(args)

    settings = get_settings()
    overrides = _settings_overrides(args)
    if overrides:
        settings = settings.with_overrides(**overrides)

    console.print(Panel(
        f"[bold]{input_path.name}[/bold]\n"
        f"Lots de {settings.batch_size} • {settings.concurrency} en parallèle"
        + (" • QCM un par un" if settings.qcm_single else ""),
        title="[bold cyan]Validation IA[/bold cyan]",
        border_style="cyan",
    ))
    check_azure_config(console)

    store = FileJobStore(settings.data_dir)
    job = store.create(input_path.name, instructions=instructions)
    console.print(f"[dim]Job: {job.id}[/dim]")

    pipeline = WorkbookPipeline(store, settings=settings)
    display = LiveJobDisplay(console)
    store.subscribe(display.on_update)
    try:
        with display:
            output = await pipeline.process(job.id, input_path.read_bytes(), instructions=instructions)
    finally:
        store.unsubscribe(display.on_update)
        if pipeline.transport is not None and hasattr(pipeline.transport, "close"):
            await pipeline.transport.close()

    job = store.get(job.id)
    if output is None:
        console.print(f"[red]✗ {job.message}: {job.error_message}[/red]")
        return 1

    output_path.write_bytes(output)
    logger.info(f"Job {job.id} output written to {output_path}")
    console.print(
        f"[green]✓ {job.fixed_count}/{job.total_items} lignes corrigées[/green] │ "
        f"[yellow]{job.failed_analyses} analyses en erreur[/yellow]"
    )
    console.print(f"Fichier écrit: [bold]{output_path}[/bold]")
    return 0


def command_status(args):
    """Show status of a job."""
    from storage.job_store import FileJobStore

    console = Console()
    store = FileJobStore(args.data_dir or get_settings().data_dir)
    job = store.get(args.job)

    if not job:
        console.print(f"[red]Job not found: {args.job}[/red]")
        return 1

    table = Table(title=f"Job: {job.id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("File", job.file_name)
    table.add_row("Status", job.status.value)
    table.add_row("Progress", f"{job.progress}%")
    table.add_row("Message", job.message)
    table.add_row("Created", str(job.created_at)[:19])
    table.add_row("Rows", str(job.total_items))
    table.add_row("Fixed", str(job.fixed_count))
    table.add_row("Successful analyses", str(job.successful_analyses))
    table.add_row("Failed analyses", str(job.failed_analyses))
    if job.error_message:
        table.add_row("Error", job.error_message)

    console.print(table)

    if not job.is_finished:
        console.print("[yellow]Job en cours, relancez status plus tard.[/yellow]")
    elif args.export and job.output_url:
        from workbook.io import from_data_url
        Path(args.export).write_bytes(from_data_url(job.output_url))
        console.print(f"Fichier écrit: [bold]{args.export}[/bold]")

    return 0


def command_list(args):
    """List recent jobs."""
    from storage.job_store import FileJobStore

    console = Console()
    store = FileJobStore(args.data_dir or get_settings().data_dir)
    status = JobStatus(args.status) if args.status else None
    jobs = store.list_jobs(status=status, limit=args.limit)

    if not jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return 0

    table = Table(title="Jobs")
    table.add_column("Job ID", style="cyan")
    table.add_column("Created", style="green")
    table.add_column("File")
    table.add_column("Status", style="yellow")
    table.add_column("Fixed", justify="right")

    for job in jobs:
        table.add_row(
            job.id,
            str(job.created_at)[:19],
            job.file_name,
            job.status.value,
            f"{job.fixed_count}/{job.total_items}",
        )

    console.print(table)
    return 0


def command_check(args):
    """Show the effective Azure OpenAI configuration."""
    console = Console()
    settings = get_settings()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Endpoint", settings.azure_endpoint or "[red]missing[/red]")
    table.add_row("Deployment", settings.azure_deployment or "[red]missing[/red]")
    table.add_row("API key", "set" if settings.azure_api_key else "[red]missing[/red]")
    table.add_row("API version", settings.azure_api_version)
    table.add_row("Timeout", f"{settings.azure_timeout_ms} ms")
    table.add_row("Max retries", str(settings.azure_max_retries))
    table.add_row("Batch size / concurrency", f"{settings.batch_size} / {settings.concurrency}")
    table.add_row("Retry batch size", str(settings.retry_batch_size))
    table.add_row("TPM / RPM budget", f"{settings.tokens_per_minute or '-'} / {settings.requests_per_minute or '-'}")
    table.add_row("Offline", str(not settings.ai_enabled))

    console.print(table)
    return 0 if check_azure_config(console) else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="AI Validation - batch review of MCQ/QROC question workbooks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s validate banque.xlsx
  %(prog)s validate banque.xlsx --instructions-file consignes.txt
  %(prog)s validate banque.xlsx --single --concurrency 2
  %(prog)s status 1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed --export corrige.xlsx
  %(prog)s list --status failed
  %(prog)s check

Note on --single:
  Les QCM sont envoyés un par un (lots de 1). Plus lent, mais chaque
  question reçoit toute l'attention du modèle.

Configuration:
  AZURE_OPENAI_API_KEY, AZURE_OPENAI_TARGET, AZURE_OPENAI_CHAT_DEPLOYMENT
  sont requis pour l'analyse IA. Sans eux, le classeur est tout de même
  normalisé et chaque ligne est marquée non corrigée.
        """
    )
    parser.add_argument("--log-level", default=None, help="Niveau de log (DEBUG, INFO, WARNING...)")
    parser.add_argument("--log-file", default=None, help="Fichier de log JSON (rotation 10 MB)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a question workbook")
    validate_parser.add_argument("workbook", help="Fichier .xlsx à valider")
    validate_parser.add_argument("--instructions", help="Instructions admin ajoutées au prompt")
    validate_parser.add_argument("--instructions-file", help="Fichier texte d'instructions admin")
    validate_parser.add_argument("--output", help="Fichier de sortie (défaut: <nom>_valide.xlsx)")
    validate_parser.add_argument("--batch-size", type=int, help="Questions par requête")
    validate_parser.add_argument("--concurrency", type=int, help="Requêtes parallèles par vague")
    validate_parser.add_argument(
        "--single",
        action="store_true",
        help="Envoyer les QCM un par un"
    )
    validate_parser.add_argument(
        "--no-retry-pass",
        action="store_true",
        help="Désactiver la seconde passe sur les QCM en erreur"
    )
    validate_parser.add_argument("--data-dir", help="Répertoire des jobs")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show job status")
    status_parser.add_argument("job", help="Job ID")
    status_parser.add_argument("--export", help="Écrire le classeur produit dans ce fichier")
    status_parser.add_argument("--data-dir", help="Répertoire des jobs")

    # List command
    list_parser = subparsers.add_parser("list", help="List recent jobs")
    list_parser.add_argument("--status", choices=[s.value for s in JobStatus])
    list_parser.add_argument("--limit", type=int, default=10)
    list_parser.add_argument("--data-dir", help="Répertoire des jobs")

    # Check command
    subparsers.add_parser("check", help="Show Azure OpenAI configuration")

    args = parser.parse_args()

    setup_structured_logging(
        level=args.log_level or get_settings().log_level,
        log_file=args.log_file,
    )

    if not args.command:
        parser.print_help()
        return 0

    # Execute command
    if args.command == "validate":
        return asyncio.run(command_validate(args))
    elif args.command == "status":
        return command_status(args)
    elif args.command == "list":
        return command_list(args)
    elif args.command == "check":
        return command_check(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
