"""
Tests for the maintenance CLI.
"""

from unittest.mock import Mock, patch

import pytest

import main
from config.lifecycle_config import get_config


@pytest.fixture
def config():
    config = get_config('default')
    config['event_system']['event_bus']['enable_logging'] = False
    return config


class TestParser:

    def test_task_is_required(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args([])

    def test_defaults(self):
        args = main.build_parser().parse_args(['--task', 'reconcile'])

        assert args.env == 'default'
        assert args.db_path is None
        assert args.user_id is None

    def test_rejects_unknown_task(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(['--task', 'explode'])


class TestRunTask:

    def test_sweep_expired_on_empty_database(self, db_session, config, capsys):
        with patch('main.get_db_session', return_value=db_session):
            assert main.run_task('sweep-expired', config) == 0

        assert "Cancelled 0 expired payments" in capsys.readouterr().out

    def test_reconcile(self, db_session, config, capsys):
        with patch('main.get_db_session', return_value=db_session):
            assert main.run_task('reconcile', config) == 0

        assert "Repaired 0 orders, resolved 0 failed payment events" in capsys.readouterr().out

    def test_stats_without_payments(self, db_session, config, capsys):
        with patch('main.get_db_session', return_value=db_session):
            main.run_task('stats', config, user_id=3)

        out = capsys.readouterr().out
        assert "No payments recorded" in out
        assert "PENDING" in out
        assert "Awaiting payment" in out

    def test_stats_with_payments(self, db_session, config, capsys, sample_payment):
        with patch('main.get_db_session', return_value=db_session):
            main.run_task('stats', config)

        out = capsys.readouterr().out
        assert "mock" in out
        assert "PENDING" in out


class TestMain:

    @patch('main.end_service_session')
    @patch('main.start_service_session', return_value='session.log')
    @patch('main.configure_context_logger')
    @patch('main.db_manager')
    @patch('main.init_database')
    @patch('main.run_task', return_value=0)
    def test_main_wires_database_and_logging(self, run_task, init_database, db_manager,
                                             configure_logger, start_session, end_session):
        assert main.main(['--task', 'stats', '--db-path', 'x.db', '--user-id', '4']) == 0

        init_database.assert_called_once_with('x.db', echo=False)
        run_task.assert_called_once()
        assert run_task.call_args.args[0] == 'stats'
        assert run_task.call_args.kwargs == {'user_id': 4}
        configure_logger.return_value.log_event.assert_called_once()
        db_manager.close.assert_called_once()
        end_session.assert_called_once()

    @patch('main.validate_config', return_value=(False, "bad expiry"))
    @patch('main.run_task')
    def test_invalid_config(self, run_task, validate, capsys):
        assert main.main(['--task', 'reconcile']) == 2

        run_task.assert_not_called()
        assert "bad expiry" in capsys.readouterr().out

    @patch('main.end_service_session')
    @patch('main.start_service_session', return_value='session.log')
    @patch('main.configure_context_logger', return_value=Mock())
    @patch('main.db_manager')
    @patch('main.init_database')
    @patch('main.run_task', side_effect=KeyboardInterrupt)
    def test_interrupt_still_closes(self, run_task, init_database, db_manager,
                                    configure_logger, start_session, end_session):
        assert main.main(['--task', 'sweep-expired']) == 130

        db_manager.close.assert_called_once()
        end_session.assert_called_once()
