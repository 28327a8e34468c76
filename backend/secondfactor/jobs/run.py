"""CLI entry point for job execution."""

import logging
import sys

import click

from secondfactor.db.engine import get_engine
from secondfactor.db.session import SessionLocal
from secondfactor.jobs.prune_verification_attempts import prune_verification_attempts

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@click.command()
@click.argument("job_key")
def run(job_key: str):
    """
    Run a maintenance job.

    Example:
        python -m secondfactor.jobs.run prune_verification_attempts
    """
    db = SessionLocal(bind=get_engine())
    try:
        if job_key == "prune_verification_attempts":
            result = prune_verification_attempts(db)
            click.echo(f"Job completed: {result}")
        else:
            click.echo(f"Unknown job key: {job_key}", err=True)
            sys.exit(1)
    except Exception as e:
        db.rollback()
        logger.error(f"Job failed: {e}", exc_info=True)
        click.echo(f"Job failed: {e}", err=True)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    run()
