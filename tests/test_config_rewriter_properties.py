"""
Property-based tests for the Config Rewriter module.

Uses Hypothesis for property-based testing to verify directive substitution,
idempotence, backup creation and cleanup of temporary files.
"""

import os
import string
import tempfile
from unittest import mock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cert_renewer import config_rewriter
from cert_renewer.config_rewriter import (
    BACKUP_DIRNAME,
    ConfigRewriter,
    TempFileRegistry,
    current_paths,
    normalize_path,
)
from cert_renewer.enums import RewriteErrorCode, RewriteStatus
from cert_renewer.exceptions import RewriteError


VHOST_TEMPLATE = """server {{
    listen 443 ssl;
    server_name {name};

{indent}ssl_certificate {cert};
{indent}ssl_certificate_key {key};

    location / {{
        proxy_pass http://127.0.0.1:8080;
    }}
}}
"""

path_segment = st.text(alphabet=string.ascii_lowercase + string.digits + "-_.", min_size=1, max_size=12)

path_strategy = st.builds(
    lambda parts: "/" + "/".join(parts),
    st.lists(path_segment, min_size=1, max_size=4),
).filter(lambda p: not p.endswith("/") and "/./" not in p)

indent_strategy = st.sampled_from(["", "    ", "\t", "  \t"])


def write_vhost(directory: str, name: str, content: str) -> str:
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    return path


def read(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def backups(directory: str) -> list:
    backup_dir = os.path.join(directory, BACKUP_DIRNAME)
    if not os.path.isdir(backup_dir):
        return []
    return sorted(os.listdir(backup_dir))


class TestSubstitutionProperty:
    """
    Property-based tests for directive substitution.

    **Property 1: After a rewrite every directive names the new paths**
    """

    @given(
        old_cert=path_strategy,
        old_key=path_strategy,
        new_cert=path_strategy,
        new_key=path_strategy,
        indent=indent_strategy,
    )
    @settings(max_examples=50)
    def test_rewrite_points_at_new_paths(
        self,
        old_cert: str,
        old_key: str,
        new_cert: str,
        new_key: str,
        indent: str,
    ) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            original = VHOST_TEMPLATE.format(
                name="example.com", indent=indent, cert=old_cert, key=old_key
            )
            conf = write_vhost(tmp, "example.com.conf", original)

            result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, new_cert, new_key)

            content = read(conf)
            assert current_paths(content) == (new_cert, new_key)
            if (old_cert, old_key) == (new_cert, new_key):
                assert result.status == RewriteStatus.ALREADY_CURRENT
                assert content == original
            else:
                assert result.status == RewriteStatus.UPDATED
                assert content == VHOST_TEMPLATE.format(
                    name="example.com", indent=indent, cert=new_cert, key=new_key
                )

    @given(new_cert=path_strategy, new_key=path_strategy)
    @settings(max_examples=50)
    def test_rewrite_is_idempotent(self, new_cert: str, new_key: str) -> None:
        """Property 1b: A second rewrite with the same paths changes nothing."""
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", VHOST_TEMPLATE.format(
                name="example.com", indent="    ", cert="/old/cert.pem", key="/old/cert.key"
            ))
            rewriter = ConfigRewriter(temp_files=TempFileRegistry())

            first = rewriter.rewrite(conf, new_cert, new_key)
            after_first = read(conf)
            second = rewriter.rewrite(conf, new_cert, new_key)

            assert first.modified
            assert not second.modified
            assert second.status == RewriteStatus.ALREADY_CURRENT
            assert second.backup_path is None
            assert read(conf) == after_first
            assert len(backups(tmp)) == 1

    def test_every_occurrence_replaced(self) -> None:
        content = (
            "server {\n"
            "    ssl_certificate /a/1.pem;\n"
            "    ssl_certificate_key /a/1.key;\n"
            "}\n"
            "server {\n"
            "\tssl_certificate   \"/a/2.pem\";\n"
            "\tssl_certificate_key /a/2.key;\n"
            "}\n"
        )
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", content)

            ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert read(conf) == (
                "server {\n"
                "    ssl_certificate /n/c.pem;\n"
                "    ssl_certificate_key /n/c.key;\n"
                "}\n"
                "server {\n"
                "\tssl_certificate /n/c.pem;\n"
                "\tssl_certificate_key /n/c.key;\n"
                "}\n"
            )

    @given(new_cert=path_strategy, new_key=path_strategy)
    @settings(max_examples=50)
    def test_directives_sharing_a_line(self, new_cert: str, new_key: str) -> None:
        content = "server { ssl_certificate /old/a.pem; ssl_certificate_key /old/a.key; }\n"
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", content)
            rewriter = ConfigRewriter(temp_files=TempFileRegistry())

            first = rewriter.rewrite(conf, new_cert, new_key)
            second = rewriter.rewrite(conf, new_cert, new_key)

            assert first.status == RewriteStatus.UPDATED
            assert read(conf) == (
                f"server {{ ssl_certificate {new_cert}; ssl_certificate_key {new_key}; }}\n"
            )
            assert current_paths(read(conf)) == (new_cert, new_key)
            assert second.status == RewriteStatus.ALREADY_CURRENT

    def test_directive_after_comment_on_same_line_untouched(self) -> None:
        content = (
            "ssl_certificate /old/c.pem; # disabled; ssl_certificate_key /old/commented.key;\n"
            "ssl_certificate_key /old/c.key;\n"
        )
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", content)

            ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert read(conf) == (
                "ssl_certificate /n/c.pem; # disabled; ssl_certificate_key /old/commented.key;\n"
                "ssl_certificate_key /n/c.key;\n"
            )

    def test_commented_directives_untouched(self) -> None:
        content = (
            "# ssl_certificate /old/commented.pem;\n"
            "ssl_certificate /old/c.pem;\n"
            "ssl_certificate_key /old/c.key;\n"
        )
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", content)

            ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert read(conf).startswith("# ssl_certificate /old/commented.pem;\n")

    def test_crlf_line_endings_preserved(self) -> None:
        content = "ssl_certificate /old/c.pem;\r\nssl_certificate_key /old/c.key;\r\n"
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", content)

            ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert read(conf) == "ssl_certificate /n/c.pem;\r\nssl_certificate_key /n/c.key;\r\n"

    def test_end_to_end_example(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "api.example.com.conf", VHOST_TEMPLATE.format(
                name="api.example.com",
                indent="    ",
                cert="/etc/ssl/old.pem",
                key="/etc/ssl/old.key",
            ))

            result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(
                conf, "/srv/cert/example.com.pem", "/srv/cert/example.com.key"
            )

            assert result.modified
            assert "ssl_certificate /srv/cert/example.com.pem;" in read(conf)
            assert "ssl_certificate_key /srv/cert/example.com.key;" in read(conf)
            assert "ssl_certificate /etc/ssl/old.pem;" in read(result.backup_path)


class TestBackupProperty:
    """
    Property-based tests for backups.

    **Property 2: A backup exists iff the file was modified, holding the old content**
    """

    @given(new_cert=path_strategy, new_key=path_strategy)
    @settings(max_examples=50)
    def test_backup_holds_original(self, new_cert: str, new_key: str) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            original = VHOST_TEMPLATE.format(
                name="example.com", indent="    ", cert="/old/c.pem", key="/old/c.key"
            )
            conf = write_vhost(tmp, "example.com.conf", original)

            result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, new_cert, new_key)

            assert result.modified
            assert os.path.dirname(result.backup_path) == os.path.join(tmp, BACKUP_DIRNAME)
            assert os.path.basename(result.backup_path).startswith("example.com.conf.backup.")
            assert read(result.backup_path) == original

    def test_configured_backup_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            backup_dir = os.path.join(tmp, "elsewhere")
            conf = write_vhost(tmp, "example.com.conf", "ssl_certificate /old/c.pem;\n")

            result = ConfigRewriter(backup_dir=backup_dir, temp_files=TempFileRegistry()).rewrite(
                conf, "/n/c.pem", "/n/c.key"
            )

            assert os.path.dirname(result.backup_path) == backup_dir

    def test_backup_names_do_not_collide(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            conf = write_vhost(tmp, "example.com.conf", "ssl_certificate /old/c.pem;\n")
            rewriter = ConfigRewriter(temp_files=TempFileRegistry())

            with mock.patch("cert_renewer.config_rewriter.datetime") as fake_datetime:
                fake_datetime.now.return_value.strftime.return_value = "20240101_000000"
                first = rewriter.rewrite(conf, "/n/1.pem", "/n/1.key")
                second = rewriter.rewrite(conf, "/n/2.pem", "/n/2.key")

            assert first.backup_path != second.backup_path
            assert second.backup_path == first.backup_path + ".1"
            assert "/old/c.pem" in read(first.backup_path)
            assert "/n/1.pem" in read(second.backup_path)

    def test_no_directives_skipped_without_backup(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "server {\n    listen 80;\n}\n"
            conf = write_vhost(tmp, "example.com.conf", content)

            result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert result.status == RewriteStatus.NO_TLS_DIRECTIVES
            assert not result.modified
            assert read(conf) == content
            assert backups(tmp) == []

    def test_no_change_leaves_no_backup(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "ssl_certificate /n/c.pem;\n"
            conf = write_vhost(tmp, "example.com.conf", content)

            with mock.patch("cert_renewer.config_rewriter.os.unlink", side_effect=OSError("busy")):
                result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert result.status == RewriteStatus.NO_CHANGE
            assert result.backup_path is None
            assert read(conf) == content
            assert sorted(os.listdir(tmp)) == ["example.com.conf"]

    def test_already_current_ignores_quotes_and_slash(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "ssl_certificate \"/n/c.pem\";\nssl_certificate_key '/n/c.key/' ;\n"
            conf = write_vhost(tmp, "example.com.conf", content)

            result = ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert result.status == RewriteStatus.ALREADY_CURRENT
            assert backups(tmp) == []


class TestRewriteFailureProperty:
    """
    Property-based tests for refused and failed rewrites.

    **Property 3: Failed rewrites leave the original and no temporary files behind**
    """

    @pytest.mark.parametrize("path", ["/srv/$(id).pem", "/srv/a;b.pem", "/srv/`x`.pem", "/srv/a\nb.pem"])
    def test_unsafe_paths_refused(self, path: str) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "ssl_certificate /old/c.pem;\n"
            conf = write_vhost(tmp, "example.com.conf", content)

            with pytest.raises(RewriteError) as exc_info:
                ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, path, "/n/c.key")

            assert exc_info.value.code == RewriteErrorCode.UNSAFE_PATH.value
            assert read(conf) == content

    def test_missing_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(RewriteError) as exc_info:
                ConfigRewriter(temp_files=TempFileRegistry()).rewrite(
                    os.path.join(tmp, "absent.conf"), "/n/c.pem", "/n/c.key"
                )
            assert exc_info.value.code == RewriteErrorCode.READ_FAILED.value

    def test_incomplete_substitution_refused(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "ssl_certificate /old/c.pem;\nssl_certificate_key /old/c.key;\n"
            conf = write_vhost(tmp, "example.com.conf", content)
            substitute = config_rewriter._substitute

            def certificate_only(pattern, text, directive, value):
                if directive == config_rewriter.KEY_DIRECTIVE:
                    return text
                return substitute(pattern, text, directive, value)

            with mock.patch("cert_renewer.config_rewriter._substitute", side_effect=certificate_only):
                with pytest.raises(RewriteError) as exc_info:
                    ConfigRewriter(temp_files=TempFileRegistry()).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert exc_info.value.code == RewriteErrorCode.VERIFY_FAILED.value
            assert exc_info.value.details["stale_paths"] == ["/old/c.key"]
            assert read(conf) == content
            assert backups(tmp) == []

    def test_rename_failure_cleans_up(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            content = "ssl_certificate /old/c.pem;\n"
            conf = write_vhost(tmp, "example.com.conf", content)
            registry = TempFileRegistry()

            with mock.patch("cert_renewer.config_rewriter.os.replace", side_effect=OSError("busy")):
                with pytest.raises(RewriteError) as exc_info:
                    ConfigRewriter(temp_files=registry).rewrite(conf, "/n/c.pem", "/n/c.key")

            assert exc_info.value.code == RewriteErrorCode.RENAME_FAILED.value
            assert read(conf) == content
            assert len(registry) == 0
            assert sorted(os.listdir(tmp)) == [BACKUP_DIRNAME, "example.com.conf"]
            assert backups(tmp) == []


class TestTempFileRegistryProperty:
    """
    Property-based tests for the temporary file registry.

    **Property 4: Purging removes every registered file**
    """

    @given(count=st.integers(min_value=0, max_value=5))
    @settings(max_examples=20)
    def test_purge_removes_files(self, count: int) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            registry = TempFileRegistry()
            paths = []
            for i in range(count):
                path = os.path.join(tmp, f".stage{i}.tmp")
                with open(path, "w") as f:
                    f.write("x")
                registry.add(path)
                paths.append(path)
            registry.add(os.path.join(tmp, "already-gone.tmp"))

            registry.purge()

            assert len(registry) == 0
            assert not any(os.path.exists(path) for path in paths)


class TestNormalizePathProperty:

    @given(path=path_strategy, quote=st.sampled_from(["", "'", '"']), slash=st.booleans())
    @settings(max_examples=100)
    def test_normalize(self, path: str, quote: str, slash: bool) -> None:
        value = f"  {quote}{path}{'/' if slash else ''}{quote} "
        assert normalize_path(value) == path
