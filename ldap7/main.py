"""
Command line entry point for ldap7.

Loads the configuration and the desired state, connects to the directory and
reconciles schools, users and groups in that order.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional

from ldap7.client import DirectoryClient, DirectoryConnectionError
from ldap7.config import load_config, load_desired_state, ConfigurationError
from ldap7.groups import sync_groups
from ldap7.logging_setup import setup_logging, get_logging_stats
from ldap7.reconcile import SyncResult
from ldap7.schools import sync_schools
from ldap7.users import sync_users

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_CONFIG = 2
EXIT_CONNECTION = 3
EXIT_UNEXPECTED = 4


class SyncOrchestrator:
    """
    Runs a full synchronization of the directory against a desired state.
    """

    def __init__(self, config_path: Optional[str] = None, data_path: Optional[str] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            data_path: Path to the desired-state file, overriding sync.data_file
        """
        self.config = None
        self.client = None
        self.config_path = config_path
        self.data_path = data_path

        self.results: List[SyncResult] = []
        self.sync_stats = {
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting ldap7 sync")

            state = load_desired_state(self.data_path or self.config['sync']['data_file'])

            self._connect()
            self._sync(state)

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()

            if any(not result.ok for result in self.results):
                logger.warning("Sync completed with failures")
                return EXIT_PARTIAL

            logger.info("Sync completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG
        except DirectoryConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            return EXIT_CONNECTION
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _load_configuration(self):
        self.config = load_config(self.config_path)

    def _connect(self):
        self.client = DirectoryClient(self.config['ldap'])
        try:
            self.client.connect()
        except DirectoryConnectionError:
            self.client = None
            raise

    def _sync(self, state):
        """Schools first so groups have a parent, groups last so members exist."""
        sync_config = self.config.get('sync', {})
        uid_range = (sync_config.get('uid_min'), sync_config.get('uid_max'))

        self.results.append(sync_schools(self.client, state.schools))
        self.results.append(sync_users(self.client, state.users, uid_range))
        self.results.append(sync_groups(self.client, state.groups))

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        runtime = self.sync_stats['runtime_seconds']
        runtime_str = f"{runtime:.2f} seconds"
        if runtime > 60:
            runtime_str = f"{int(runtime // 60)}m {runtime % 60:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        for result in self.results:
            logger.info(result.summary())
            for key in result.failed:
                logger.info(f"  failed: {key}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the configuration and the directory.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        data_path = self.data_path or self.config['sync']['data_file']
        try:
            state = load_desired_state(data_path)
            health_status['checks']['data'] = {
                'status': 'pass',
                'message': (f'{len(state.schools)} schools, {len(state.groups)} groups, '
                            f'{len(state.users)} users')
            }
        except ConfigurationError as e:
            health_status['checks']['data'] = {
                'status': 'fail',
                'message': str(e)
            }
            health_status['status'] = 'unhealthy'

        test_client = DirectoryClient(self.config['ldap'])
        if test_client.test_connection():
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': 'LDAP connection successful',
                'details': test_client.get_connection_stats()
            }
        else:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f"LDAP connection to {self.config['ldap']['server_url']} failed"
            }
            health_status['status'] = 'unhealthy'
        test_client.disconnect()

        health_status['checks']['logging'] = {
            'status': 'pass',
            'details': get_logging_stats()
        }

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.client:
            self.client.disconnect()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Synchronize schools, groups and users into LDAP')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--data', '-d', help='Path to desired-state file (overrides sync.data_file)')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')

    args = parser.parse_args(argv)

    orchestrator = SyncOrchestrator(config_path=args.config, data_path=args.data)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(EXIT_OK if health_status['status'] == 'healthy' else EXIT_PARTIAL)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
