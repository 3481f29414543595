"""
Lease Accounting Engine bootstrap
Logging setup, processor factories and the batch close entry point
"""

import argparse
import json
import logging
import os
from datetime import date
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from lease_accounting.config import Config, PolicyConfig, config
from lease_accounting.core.ledger import LeaseLedger
from lease_accounting.core.processor import BatchProcessor, LeaseProcessor
from lease_accounting.utils.lease_loader import load_leases
from lease_accounting.utils.rfr_rates import RiskFreeRateTable


def setup_logging(log_dir: Path, level: Optional[str] = None, config_class=Config):
    """Setup engine logging"""
    log_dir.mkdir(parents=True, exist_ok=True)

    log_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler with rotation
    log_file = log_dir / 'lease_engine.log'
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config_class.LOG_MAX_BYTES,
        backupCount=config_class.LOG_BACKUP_COUNT
    )
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.DEBUG)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    console_handler.setLevel(level or config_class.LOG_LEVEL)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    return root_logger


def _config_class(config_name: Optional[str] = None):
    config_name = config_name or os.environ.get('LEASE_ENV', 'default')
    return config[config_name]


def create_processor(config_name: Optional[str] = None, ledger: Optional[LeaseLedger] = None,
                     risk_free_rates: Optional[RiskFreeRateTable] = None) -> LeaseProcessor:
    """Processor factory: policy built from the named configuration"""
    policy = PolicyConfig.from_config(_config_class(config_name))
    return LeaseProcessor(policy, risk_free_rates, ledger)


def create_batch_processor(config_name: Optional[str] = None, ledger: Optional[LeaseLedger] = None,
                           risk_free_rates: Optional[RiskFreeRateTable] = None) -> BatchProcessor:
    config_class = _config_class(config_name)
    return BatchProcessor(PolicyConfig.from_config(config_class), config_class.MAX_WORKERS,
                          risk_free_rates, ledger)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a lease batch close")
    parser.add_argument('leases', help="JSON file with lease payloads")
    parser.add_argument('--config', default=None, help="development | production | testing")
    parser.add_argument('--rfr', default=None, help="CSV of risk-free rates (date, percent)")
    parser.add_argument('--period-start', default=None, help="Disclosure period start (YYYY-MM-DD)")
    parser.add_argument('--period-end', default=None, help="Disclosure period end (YYYY-MM-DD)")
    args = parser.parse_args(argv)

    config_class = _config_class(args.config)
    logger = setup_logging(Path(config_class.LOG_DIR), config_class=config_class)
    logger.info("🚀 Starting lease batch close...")

    risk_free_rates = None
    if args.rfr:
        risk_free_rates = RiskFreeRateTable()
        risk_free_rates.load_from_file(args.rfr)

    ledger = LeaseLedger()
    batch = create_batch_processor(args.config, ledger, risk_free_rates)
    result = batch.process_all_leases(load_leases(args.leases))

    output = {
        'processed': result.processed_count,
        'skipped': result.skipped_count,
        'errors': {lease_id: f"{type(e).__name__}: {e}" for lease_id, e in result.errors.items()},
    }
    if args.period_start and args.period_end:
        processor = LeaseProcessor(batch.policy, risk_free_rates, ledger)
        disclosure = processor.disclosure(date.fromisoformat(args.period_start),
                                          date.fromisoformat(args.period_end))
        output['disclosure'] = disclosure.to_dict()

    print(json.dumps(output, indent=2))
    return 0 if result.skipped_count == 0 else 1


if __name__ == '__main__':
    raise SystemExit(main())
