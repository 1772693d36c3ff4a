"""
Property-based tests for the ACME client wrapper.

Uses Hypothesis for property-based testing to verify command construction,
exit status interpretation and artifact verification. acme.sh itself is
replaced by a fake runner.
"""

import os
import stat
import subprocess
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cert_renewer.acme_client import RENEW_SKIPPED_EXIT, AcmeClient
from cert_renewer.exceptions import InstallError, IssuanceError, ToolNotFoundError
from cert_renewer.models import CredentialSet


class FakeAcme:
    """Stands in for subprocess.run, optionally producing acme.sh artifacts."""

    def __init__(self, home: Path, returncode: int = 0, artifacts: bool = True, ecc: bool = True):
        self.home = home
        self.returncode = returncode
        self.artifacts = artifacts
        self.ecc = ecc
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        if "--issue" in argv and self.artifacts:
            domain = argv[argv.index("-d") + 1]
            directory = self.home / (f"{domain}_ecc" if self.ecc else domain)
            directory.mkdir(parents=True, exist_ok=True)
            (directory / f"{domain}.cer").write_text("CERT")
            (directory / f"{domain}.key").write_text("KEY")
        if "--install-cert" in argv and self.returncode == 0:
            Path(argv[argv.index("--key-file") + 1]).write_text("KEY")
            Path(argv[argv.index("--fullchain-file") + 1]).write_text("CHAIN")
        return subprocess.CompletedProcess(argv, self.returncode, stdout="line one\nline two\n")


def make_client(home: Path, runner) -> AcmeClient:
    return AcmeClient(Path("/opt/acme/acme.sh"), home=home, timeout=600, runner=runner)


class TestIssueProperty:
    """
    Property-based tests for issuance.

    **Property 1: Issuance succeeds only with an accepted exit status and artifacts on disk**
    """

    @given(
        domain=st.sampled_from(["example.com", "*.example.com", "*.v1.example.com", "api.example.org"]),
        provider=st.sampled_from(["dns_ali", "dns_cf", "dns_gd"]),
        dns_sleep=st.integers(min_value=0, max_value=600),
    )
    @settings(max_examples=50)
    def test_issue_command(self, domain: str, provider: str, dns_sleep: int) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp))
            client = make_client(Path(tmp), runner)

            credentials = CredentialSet(variables={"Ali_Key": "X"})

            result = client.issue(provider, domain, dns_sleep, credentials=credentials)

            argv, kwargs = runner.calls[0]
            assert argv == [
                "/opt/acme/acme.sh", "--issue", "--dns", provider,
                "-d", domain, "--dnssleep", str(dns_sleep),
            ]
            assert kwargs["timeout"] == dns_sleep + 600
            assert kwargs["env"]["Ali_Key"] == "X"
            assert kwargs["env"].get("PATH") == os.environ.get("PATH")
            assert result.returncode == 0

    def test_credentials_not_exported_to_process(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            client = make_client(Path(tmp), FakeAcme(Path(tmp)))
            client.issue(
                "dns_ali", "example.com", 0,
                credentials=CredentialSet(variables={"CERT_RENEWER_TEST_SECRET": "X"}),
            )
            assert "CERT_RENEWER_TEST_SECRET" not in os.environ

    def test_no_env_inherits_environment(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp))
            make_client(Path(tmp), runner).issue("dns_cf", "example.com", 10)
            assert runner.calls[0][1]["env"] is None

    @pytest.mark.parametrize("ecc", [True, False])
    def test_not_due_for_renewal_counts_as_success(self, ecc: bool) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp), returncode=RENEW_SKIPPED_EXIT, ecc=ecc)
            result = make_client(Path(tmp), runner).issue("dns_cf", "example.com", 10)
            assert result.returncode == RENEW_SKIPPED_EXIT

    @given(returncode=st.integers(min_value=1, max_value=255).filter(lambda c: c != RENEW_SKIPPED_EXIT))
    @settings(max_examples=30)
    def test_failure_exit_status(self, returncode: int) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp), returncode=returncode)
            with pytest.raises(IssuanceError) as exc_info:
                make_client(Path(tmp), runner).issue("dns_cf", "example.com", 10)
            assert exc_info.value.code == "issue_failed"
            assert exc_info.value.details["returncode"] == returncode

    def test_zero_exit_without_artifacts_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp), artifacts=False)
            with pytest.raises(IssuanceError) as exc_info:
                make_client(Path(tmp), runner).issue("dns_cf", "example.com", 10)
            assert exc_info.value.code == "artifacts_missing"

    def test_empty_artifacts_fail(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp) / "example.com_ecc"
            directory.mkdir()
            (directory / "example.com.cer").write_text("")
            (directory / "example.com.key").write_text("KEY")
            client = make_client(Path(tmp), FakeAcme(Path(tmp), artifacts=False))

            assert client.find_artifacts("example.com") is None

    def test_timeout_fails(self) -> None:
        def runner(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(IssuanceError) as exc_info:
                make_client(Path(tmp), runner).issue("dns_cf", "example.com", 10)
            assert exc_info.value.code == "issue_not_run"

    def test_wildcard_artifact_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            client = make_client(Path(tmp), FakeAcme(Path(tmp)))
            assert client.artifact_dirs("*.example.com") == [
                Path(tmp) / "*.example.com_ecc",
                Path(tmp) / "*.example.com",
            ]


class TestInstallProperty:
    """
    Property-based tests for installation.

    **Property 2: Installation succeeds only when both files are written**
    """

    def test_install_command(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp))
            cert = Path(tmp) / "example.com.pem"
            key = Path(tmp) / "example.com.key"

            make_client(Path(tmp), runner).install("*.example.com", key, cert)

            assert runner.calls[0][0] == [
                "/opt/acme/acme.sh", "--install-cert", "-d", "*.example.com",
                "--key-file", str(key), "--fullchain-file", str(cert),
            ]

    def test_install_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp), returncode=1)
            with pytest.raises(InstallError) as exc_info:
                make_client(Path(tmp), runner).install(
                    "example.com", Path(tmp) / "k", Path(tmp) / "c"
                )
            assert exc_info.value.code == "install_failed"

    def test_install_without_output_files(self) -> None:
        def runner(argv, **kwargs):
            return subprocess.CompletedProcess(argv, 0, stdout="")

        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(InstallError) as exc_info:
                make_client(Path(tmp), runner).install(
                    "example.com", Path(tmp) / "k", Path(tmp) / "c"
                )
            assert exc_info.value.code == "empty_output"


class TestMaintenanceProperty:

    def test_upgrade_and_default_ca(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeAcme(Path(tmp))
            client = make_client(Path(tmp), runner)

            assert client.upgrade()
            assert client.set_default_ca("letsencrypt")
            assert runner.calls[0][0] == ["/opt/acme/acme.sh", "--upgrade"]
            assert runner.calls[1][0] == [
                "/opt/acme/acme.sh", "--set-default-ca", "--server", "letsencrypt",
            ]

    def test_maintenance_failure_is_not_raised(self) -> None:
        def runner(argv, **kwargs):
            raise OSError("exec format error")

        client = make_client(Path("/nonexistent"), runner)
        assert client.upgrade() is False
        assert client.set_default_ca("zerossl") is False


class TestLocateProperty:

    def test_configured_executable_found(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            executable = Path(tmp) / "acme.sh"
            executable.write_text("#!/bin/sh\n")
            executable.chmod(executable.stat().st_mode | stat.S_IXUSR)

            assert AcmeClient.locate(executable) == executable

    def test_missing_executable(self, monkeypatch) -> None:
        monkeypatch.setattr("cert_renewer.acme_client.SEARCH_PATHS", ())
        monkeypatch.setattr("cert_renewer.acme_client.shutil.which", lambda name: None)
        with pytest.raises(ToolNotFoundError) as exc_info:
            AcmeClient.locate(Path("/nonexistent/acme.sh"))
        assert exc_info.value.code == "acme_not_found"

    def test_home_defaults_beside_executable(self) -> None:
        client = AcmeClient(Path("/home/ops/.acme.sh/acme.sh"))
        assert client.home == Path("/home/ops/.acme.sh")
