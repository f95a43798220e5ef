import pytest

from diffutils_builder.config import BuildConfig, PatchRecord, TarballSpec
from diffutils_builder.errors import PatchError
from diffutils_builder.patches import apply_patches, apply_unified_diff, parse_unified_diff
from diffutils_builder.sources import extract

from conftest import DIFF_C, TARBALL_URL

FIVE_LINES = "line 1\nline 2\nline 3\nline 4\nline 5\n"

REPLACE_LINE_3 = """\
--- a/f.txt
+++ b/f.txt
@@ -2,3 +2,3 @@
 line 2
-line 3
+line three
 line 4
"""

DIFF_C_PATCH = """\
diff -ru diffutils-3.10.orig/src/diff.c diffutils-3.10/src/diff.c
--- diffutils-3.10.orig/src/diff.c
+++ diffutils-3.10/src/diff.c
@@ -1,5 +1,6 @@
 /* diff - compare files line by line */
 #include <config.h>
+#include <windows.h>
 
 int
 main (int argc, char **argv)
"""


def test_parse_hunk_headers():
    hunks = parse_unified_diff(REPLACE_LINE_3)

    assert len(hunks) == 1
    assert (hunks[0].old_start, hunks[0].old_len, hunks[0].new_start, hunks[0].new_len) == (2, 3, 2, 3)
    assert hunks[0].old_lines == ["line 2", "line 3", "line 4"]
    assert hunks[0].new_lines == ["line 2", "line three", "line 4"]


def test_apply_single_hunk():
    assert apply_unified_diff(FIVE_LINES, REPLACE_LINE_3) == (
        "line 1\nline 2\nline three\nline 4\nline 5\n"
    )


def test_apply_hunk_with_offset():
    shifted = "extra a\nextra b\n" + FIVE_LINES

    assert apply_unified_diff(shifted, REPLACE_LINE_3) == (
        "extra a\nextra b\nline 1\nline 2\nline three\nline 4\nline 5\n"
    )


def test_apply_multiple_hunks():
    original = "".join(f"l{i}\n" for i in range(1, 11))
    patch = """\
@@ -1,2 +1,3 @@
 l1
+inserted
 l2
@@ -9,2 +10,1 @@
 l9
-l10
"""

    expected = "l1\ninserted\n" + "".join(f"l{i}\n" for i in range(2, 10))
    assert apply_unified_diff(original, patch) == expected


def test_apply_insertion_into_empty_file():
    patch = "--- /dev/null\n+++ b/new.txt\n@@ -0,0 +1,2 @@\n+first\n+second\n"

    assert apply_unified_diff("", patch) == "first\nsecond\n"


def test_no_newline_at_end_of_file():
    patch = """\
@@ -1,2 +1,2 @@
 a
-b
\\ No newline at end of file
+c
\\ No newline at end of file
"""

    assert apply_unified_diff("a\nb", patch) == "a\nc"


def test_adding_newline_at_end_of_file():
    patch = """\
@@ -1,2 +1,2 @@
 a
-b
\\ No newline at end of file
+b
"""

    assert apply_unified_diff("a\nb", patch) == "a\nb\n"


def test_crlf_line_endings_are_preserved():
    original = "one\r\ntwo\r\nthree\r\n"
    patch = "@@ -1,3 +1,3 @@\n one\n-two\n+TWO\n three\n"

    assert apply_unified_diff(original, patch) == "one\r\nTWO\r\nthree\r\n"


def test_form_feed_lines_are_not_split():
    original = "a\n\x0c\nb\n"
    patch = "@@ -1,3 +1,3 @@\n a\n \x0c\n-b\n+c\n"

    assert apply_unified_diff(original, patch) == "a\n\x0c\nc\n"


def test_context_mismatch_fails():
    with pytest.raises(PatchError, match="hunk #1 failed"):
        apply_unified_diff(FIVE_LINES.replace("line 3", "line 33"), REPLACE_LINE_3)


@pytest.mark.parametrize(
    "patch",
    [
        "no hunks in here\n",
        "@@ -1,2 +1,2 @@\n*bogus\n a\n",
        "@@ -1,3 +1,3 @@\n a\n",
    ],
)
def test_malformed_patches_fail(patch):
    with pytest.raises(PatchError):
        apply_unified_diff(FIVE_LINES, patch)


def _patch_config(*records: tuple[str, str]) -> BuildConfig:
    return BuildConfig(
        TarballSpec(TARBALL_URL, "00"),
        tuple(PatchRecord(patch, file) for patch, file in records),
    )


def test_apply_patches_keeps_orig_backup(build_root, source_tree):
    (build_root / "patches").mkdir()
    (build_root / "patches" / "diff-c.patch").write_text(DIFF_C_PATCH)

    patched = apply_patches(_patch_config(("patches/diff-c.patch", "src/diff.c")), build_root, source_tree)

    target = source_tree / "src" / "diff.c"
    assert patched == [target]
    assert "#include <windows.h>\n" in target.read_text()
    assert (source_tree / "src" / "diff.c.orig").read_text() == DIFF_C


def test_apply_patches_overwrites_previous_backup(build_root, source_tree):
    (build_root / "diff-c.patch").write_text(DIFF_C_PATCH)
    (source_tree / "src" / "diff.c.orig").write_text("from an earlier run")

    apply_patches(_patch_config(("diff-c.patch", "src/diff.c")), build_root, source_tree)

    assert (source_tree / "src" / "diff.c.orig").read_text() == DIFF_C


def test_apply_patches_in_configured_order(build_root, source_tree):
    second = (
        "@@ -2,3 +2,4 @@\n"
        " #include <config.h>\n"
        " #include <windows.h>\n"
        "+#include <io.h>\n"
        " \n"
    )
    (build_root / "first.patch").write_text(DIFF_C_PATCH)
    (build_root / "second.patch").write_text(second)

    apply_patches(
        _patch_config(("first.patch", "src/diff.c"), ("second.patch", "src/diff.c")),
        build_root,
        source_tree,
    )

    content = (source_tree / "src" / "diff.c").read_text()
    assert content.index("<windows.h>") < content.index("<io.h>")
    # the backup holds the state right before the last patch
    assert "<windows.h>" in (source_tree / "src" / "diff.c.orig").read_text()


def test_missing_patch_file_fails(build_root, source_tree):
    with pytest.raises(PatchError, match="unable to read patch"):
        apply_patches(_patch_config(("missing.patch", "src/diff.c")), build_root, source_tree)


def test_missing_target_file_fails(build_root, source_tree):
    (build_root / "diff-c.patch").write_text(DIFF_C_PATCH)

    with pytest.raises(PatchError, match="patch target"):
        apply_patches(_patch_config(("diff-c.patch", "src/missing.c")), build_root, source_tree)


def test_patching_is_deterministic(tarball, build_root, tmp_path):
    path, _ = tarball
    (build_root / "diff-c.patch").write_text(DIFF_C_PATCH)
    config = _patch_config(("diff-c.patch", "src/diff.c"))

    results = []
    for run in ("first", "second"):
        dest = tmp_path / run
        dest.mkdir()
        tree = extract(path, dest)
        apply_patches(config, build_root, tree)
        results.append((tree / "src" / "diff.c").read_bytes())

    assert results[0] == results[1]
