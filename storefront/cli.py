from flask.cli import AppGroup
from storefront.services.audit_service import log_audit
from storefront.services.issue_admin_service import (
    auto_close_stale_issues,
    preview_auto_close,
)
import click
import logging

logger = logging.getLogger(__name__)

issues_cli = AppGroup('issues', help='Issue maintenance jobs.')


@issues_cli.command('auto-close')
@click.option('--dry-run', is_flag=True,
              help='List stale issues without closing them.')
def auto_close_command(dry_run):
    """Close INFO_REQUESTED issues the customer never answered."""
    if dry_run:
        preview = preview_auto_close()
        click.echo(
            f"{preview['issues_would_close']} issue(s) would be closed "
            f"(stale after {preview['stale_days']} days)")
        for issue in preview['issues']:
            click.echo(
                f"  #{issue['id']} order {issue['order_id']} "
                f"{issue['product_name']}: "
                f"{issue['days_since_last_activity']} days idle")
        return

    closed_ids = auto_close_stale_issues()
    for issue_id in closed_ids:
        log_audit(
            action='ISSUE_AUTO_CLOSE',
            target_type='ISSUE',
            target_id=issue_id)

    logger.info("CLI auto-close closed %s issue(s)", len(closed_ids))
    click.echo(f"Closed {len(closed_ids)} issue(s)")
