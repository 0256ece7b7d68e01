# Copyright (c) Syntropy Systems
"""Tests for ticketsweep CLI commands."""

import json

from typer.testing import CliRunner

from ticketsweep.cli.main import app
from ticketsweep.heartbeat import write_alive
from ticketsweep.tickets import TicketStore

runner = CliRunner()


def _output(result) -> str:
    """Console output with line wrapping undone."""
    return " ".join(result.stdout.split())


class TestInitCommand:
    """Tests for ticketsweep init command."""

    def test_init_creates_queues(self, temp_dir):
        """Test that init creates the queue directories and config."""
        root = temp_dir / "tickets"

        result = runner.invoke(app, ["init", str(root)])

        assert result.exit_code == 0
        assert (root / "open").is_dir()
        assert (root / "processing").is_dir()
        assert (root / "done").is_dir()
        assert (root / "config.yaml").exists()

    def test_init_already_initialized(self, temp_dir):
        """Test init when already initialized."""
        root = temp_dir / "tickets"
        runner.invoke(app, ["init", str(root)])

        result = runner.invoke(app, ["init", str(root)])

        assert result.exit_code == 0
        assert "Already initialized" in _output(result)


class TestGenerateCommand:
    """Tests for ticketsweep generate command."""

    def test_generate(self, setup_path, ticket_root):
        """Test that generate writes one ticket per variation."""
        result = runner.invoke(app, ["generate", str(setup_path), str(ticket_root)])

        assert result.exit_code == 0
        assert "Wrote 6 tickets" in _output(result)
        assert TicketStore(ticket_root).counts().open == 6

    def test_generate_dry_run(self, setup_path, ticket_root):
        """Test dry run leaves the queue empty."""
        result = runner.invoke(
            app,
            ["generate", str(setup_path), str(ticket_root), "--dry-run", "-t", "10s", "-n", "20"],
        )

        assert result.exit_code == 0
        assert "Dry run" in _output(result)
        assert "0.5 s" in _output(result)
        assert TicketStore(ticket_root).counts().total == 0

    def test_generate_with_limit(self, setup_path, ticket_root):
        """Test limiting the number of tickets."""
        result = runner.invoke(app, ["generate", str(setup_path), str(ticket_root), "-l", "4"])

        assert result.exit_code == 0
        assert TicketStore(ticket_root).counts().open == 4

    def test_generate_invalid_time(self, setup_path, ticket_root):
        """Test that malformed times are rejected."""
        result = runner.invoke(app, ["generate", str(setup_path), str(ticket_root), "-t", "soon"])

        assert result.exit_code == 2

    def test_generate_invalid_setup(self, temp_dir, ticket_root):
        """Test that a broken setup document is fatal."""
        setup = temp_dir / "broken.json"
        setup.write_text("{")

        result = runner.invoke(app, ["generate", str(setup), str(ticket_root)])

        assert result.exit_code == 1
        assert "Error" in _output(result)
        assert TicketStore(ticket_root).counts().total == 0

    def test_generate_unknown_engine(self, setup_path, ticket_root):
        """Test that an engine that cannot be imported is fatal."""
        result = runner.invoke(
            app,
            ["generate", str(setup_path), str(ticket_root), "--engine", "no_such_module_xyz:Engine"],
        )

        assert result.exit_code == 1
        assert "Could not load engine" in _output(result)


class TestStatusCommand:
    """Tests for ticketsweep status command."""

    def test_status_empty(self, ticket_root):
        """Test status with no tickets."""
        result = runner.invoke(app, ["status", str(ticket_root)])

        assert result.exit_code == 0
        assert "No tickets" in _output(result)

    def test_status_counts(self, setup_path, ticket_root):
        """Test status after generating and claiming."""
        runner.invoke(app, ["generate", str(setup_path), str(ticket_root)])
        TicketStore(ticket_root).pull_ticket()

        result = runner.invoke(app, ["status", str(ticket_root)])

        assert result.exit_code == 0
        assert "open" in _output(result)
        assert "processing" in _output(result)
        assert "0 of 6" in _output(result)

    def test_status_not_initialized(self, temp_dir):
        """Test status without a queue."""
        result = runner.invoke(app, ["status", str(temp_dir / "nowhere")])

        assert result.exit_code == 1
        assert "ticketsweep init" in _output(result)


class TestWorkerCommand:
    """Tests for ticketsweep worker command."""

    def test_worker_requires_runnable_engine(self, setup_path, ticket_root, temp_dir):
        """The default engine cannot run, so every run fails but the loop ends."""
        runner.invoke(app, ["generate", str(setup_path), str(ticket_root), "-l", "1"])

        result = runner.invoke(
            app, ["worker", str(ticket_root), "--target-dir", str(temp_dir / "results")]
        )

        assert result.exit_code == 0
        assert "0 completed" in _output(result)
        assert "1 failed" in _output(result)

    def test_worker_missing_setup(self, setup_path, ticket_root, temp_dir):
        """A setup document that cannot be found is fatal."""
        runner.invoke(app, ["generate", str(setup_path), str(ticket_root), "-l", "1"])

        result = runner.invoke(
            app,
            [
                "worker", str(ticket_root),
                "--target-dir", str(temp_dir / "results"),
                "--setup-dir", str(temp_dir / "nowhere"),
            ],
        )

        assert result.exit_code == 1
        assert "Unable to read simulation setup" in _output(result)


class TestMonitorCommand:
    """Tests for ticketsweep monitor command."""

    def test_monitor_once_reclaims(self, setup_path, ticket_root, temp_dir):
        """Test a single sweep requeues a stale run."""
        runner.invoke(app, ["generate", str(setup_path), str(ticket_root), "-l", "1"])
        ticket = TicketStore(ticket_root).pull_ticket()
        run_dir = temp_dir / "results" / "setup" / ticket.identifier
        run_dir.mkdir(parents=True)
        write_alive(run_dir, 0)

        result = runner.invoke(
            app, ["monitor", str(ticket_root), "--target-dir", str(temp_dir / "results"), "--once"]
        )

        assert result.exit_code == 0
        assert ticket.identifier in _output(result)
        assert TicketStore(ticket_root).counts().open == 1
        assert not run_dir.exists()

    def test_monitor_once_nothing_to_do(self, ticket_root, temp_dir):
        """Test the explicit nothing-to-reclaim message."""
        result = runner.invoke(
            app,
            ["monitor", str(ticket_root), "--target-dir", str(temp_dir), "--once", "--threshold", "1min"],
        )

        assert result.exit_code == 0
        assert "No simulations found to reclaim" in _output(result)


class TestSplitCommand:
    """Tests for ticketsweep split command."""

    def test_split(self, setup_path, temp_dir):
        """Test splitting a setup into shards."""
        output = temp_dir / "shards"

        result = runner.invoke(app, ["split", str(setup_path), "-s", "3", "-o", str(output)])

        assert result.exit_code == 0
        shards = sorted(output.iterdir())
        assert [p.name for p in shards] == ["setup_1.json", "setup_2.json", "setup_3.json"]
        for shard in shards:
            json.loads(shard.read_text())

    def test_split_with_names(self, setup_path, temp_dir):
        """Test naming shards after machines."""
        names = temp_dir / "machines.txt"
        names.write_text("node-a\n\nnode-b\n")

        result = runner.invoke(
            app, ["split", str(setup_path), "-s", "2", "-o", str(temp_dir), "--names", str(names)]
        )

        assert result.exit_code == 0
        assert (temp_dir / "node-a.json").exists()
        assert (temp_dir / "node-b.json").exists()

    def test_split_too_many_shards(self, setup_path, temp_dir):
        """Test that more shards than combinations is an error."""
        result = runner.invoke(app, ["split", str(setup_path), "-s", "7"])

        assert result.exit_code == 1
        assert "only has 3 distinct combinations" in _output(result)
