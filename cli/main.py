"""
Main CLI application for the budget sync.

This module provides the command-line interface: running the API server,
driving a sync run against a running server, and checking the rule file.
"""

import logging
import sys
from typing import Any, Dict, List
import click
import yaml

from api.models.config import create_example_config, load_config_file
from api.models.rule import Rule
from api.services.validator import validate_rule
from cli.api_client import APIClient, APIClientError
from core.file_validator import FileValidator
from core.store import RuleStore, StoreError


STATUS_LABELS = {
    'pending': 'Pending',
    'auto_categorized': 'Auto',
    'manual_categorized': 'Manual',
    'needs_attention': 'Attention',
    'skipped': 'Skipped',
    'imported': 'Imported',
}

DUPLICATE_MARKS = {
    'not_duplicate': '',
    'possible_duplicate': '?',
    'confirmed_duplicate': '=',
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def display_issues(issues: List[Dict[str, Any]]) -> None:
    for issue in issues:
        click.echo(f"  • {issue.get('field')}: {issue.get('message')}")


def display_summary(summary: Dict[str, Any]) -> None:
    """Print the transaction table and counts of a session summary."""
    transactions = summary.get('transactions', [])
    click.echo(f"\n{len(transactions)} transactions:")
    for tx in transactions:
        mark = DUPLICATE_MARKS.get(tx['duplicate']['status'], '')
        category = tx.get('category_name') or ('(split)' if tx.get('splits') else '-')
        payee = tx.get('payee_override') or tx.get('payee') or 'Unknown'
        click.echo(
            f"{mark:1} {tx['booking_date']}  {float(tx['amount']):>10.2f} {tx['currency']}  "
            f"{payee[:30]:30}  {category[:25]:25}  {STATUS_LABELS.get(tx['status'], tx['status'])}"
        )
        if tx['duplicate'].get('reason'):
            click.echo(f"    {tx['duplicate']['reason']}")
        for link in tx.get('external_links', []):
            click.echo(f"    {link['label']}: {link['url']}")

    counts = summary.get('duplicate_counts', {})
    click.echo(
        f"\nDuplicates: {counts.get('confirmed', 0)} confirmed, "
        f"{counts.get('possible', 0)} possible"
    )
    status_counts = {k: v for k, v in summary.get('status_counts', {}).items() if v}
    click.echo("Status: " + ", ".join(f"{STATUS_LABELS.get(k, k)} {v}" for k, v in status_counts.items()))


@click.group()
def main() -> None:
    """
    Budget Sync

    Reconcile bank transactions with a budgeting ledger.
    """


@main.command()
@click.option('-c', '--config-file', required=True, type=click.Path(exists=True),
              help='YAML configuration file')
@click.option('-h', '--host', default='127.0.0.1', help='Host to bind to (default: 127.0.0.1)')
@click.option('-p', '--port-num', default=8000, type=int,
              help='Port number for API server (default: 8000)')
def serve(config_file: str, host: str, port_num: int) -> None:
    """Run the API server."""
    from api.main import run_server
    from api.services.sync_orchestrator import configure_orchestrator, create_orchestrator

    try:
        config = load_config_file(config_file)
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    configure_logging(config.log_level)

    try:
        configure_orchestrator(create_orchestrator(config))
    except StoreError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"🌐 API server running at http://{host}:{port_num}")
    click.echo(f"📖 API documentation: http://{host}:{port_num}/docs")
    run_server(host, port_num, log_level=config.log_level.lower())


@main.command()
@click.option('-u', '--url', default='http://127.0.0.1:8000', help='API server URL')
@click.option('--skip-duplicates/--keep-duplicates', default=True,
              help='Skip confirmed duplicates before importing (default: skip)')
@click.option('-y', '--yes', is_flag=True, help='Import without asking')
def sync(url: str, skip_duplicates: bool, yes: bool) -> None:
    """Run one sync against a running API server."""
    client = APIClient(url)
    if not client.wait_for_server(max_attempts=3):
        click.echo(f"❌ API server not reachable at {url}", err=True)
        sys.exit(1)

    session_id = None
    try:
        session_id = client.start_session()['session_id']
        click.echo("🔄 Authenticating with the bank...")
        challenge = client.begin_bank_auth(session_id)
        if challenge['kind'] != 'none':
            click.echo(challenge.get('message') or f"Bank challenge: {challenge['kind']}")
            click.confirm("Confirmed the challenge with your bank?", abort=True)

        click.echo("🔄 Fetching transactions...")
        summary = client.confirm_challenge(session_id)
        display_summary(summary)

        if skip_duplicates:
            for tx in summary['transactions']:
                if tx['duplicate']['status'] == 'confirmed_duplicate' and tx['status'] != 'skipped':
                    client.skip_transaction(tx['id'])

        ready = [
            tx for tx in client.get_session()['transactions']
            if tx['status'] != 'skipped' and (tx.get('category_id') or tx.get('splits'))
        ]
        if not ready:
            click.echo("Nothing ready to import; categorize transactions through the API first.")
            return

        if not yes and not click.confirm(f"\nImport {len(ready)} transactions?"):
            client.cancel_session(session_id)
            click.echo("Sync cancelled.")
            return

        result = client.import_transactions(session_id)
        click.echo(f"✅ Imported {result['imported']} of {result['attempted']} transactions")
        if result['rejected']:
            click.echo(f"⚠️ {result['rejected']} rejected by the ledger as duplicates")
        if result['unmapped_rejections']:
            click.echo(f"⚠️ Unmatched ledger rejections: {', '.join(result['unmapped_rejections'])}")

    except click.Abort:
        if session_id:
            client.cancel_session(session_id)
        click.echo("\nSync cancelled by user.")
        sys.exit(1)
    except APIClientError as e:
        click.echo(f"❌ {e}", err=True)
        display_issues(e.issues)
        sys.exit(1)


@main.command('check-rules')
@click.option('-c', '--config-file', required=True, type=click.Path(exists=True),
              help='YAML configuration file')
def check_rules(config_file: str) -> None:
    """Validate every rule in the configured rule file."""
    try:
        config = load_config_file(config_file)
        if not config.storage.rules_file:
            click.echo("No rules file configured")
            return
        rules: List[Rule] = RuleStore(config.storage.rules_file).list()
    except (ValueError, StoreError) as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    invalid = 0
    for rule in rules:
        issues = validate_rule(rule)
        if issues:
            invalid += 1
            click.echo(f"❌ {rule.name or rule.id}")
            display_issues([issue.to_dict() for issue in issues])

    click.echo(f"{len(rules)} rules checked, {invalid} invalid")
    if invalid:
        sys.exit(1)


@main.command('init-config')
@click.argument('output_file', type=click.Path())
def init_config(output_file: str) -> None:
    """Write an example configuration file."""
    content = yaml.safe_dump(create_example_config(), sort_keys=False)
    errors = FileValidator.safe_file_write(output_file, content)
    if errors:
        click.echo(f"❌ {errors[0].message}", err=True)
        sys.exit(1)
    click.echo(f"✅ Example configuration written to {output_file}")


if __name__ == "__main__":
    main()
