#
# Layout of the build root
#

CONFIG_FILE_NAME = "config.json"
DEFAULT_CONFIG_FILE_NAME = "config-default.json"

SOURCE_DIR_NAME = "src"
OUTPUT_DIR_NAME = "out"
BINARY_DIR_NAME = "bin"

BINARY_GLOB = "*.exe"
CHECKSUM_SUFFIX = ".sha256"
BACKUP_SUFFIX = ".orig"

#
# MSYS2 provisioning
#

# NOTE: the full upgrade is issued twice on purpose, pacman updates its core
# packages on the first pass and everything else on the second one.
PACMAN_PROVISION_COMMANDS = [
    "pacman --noconfirm -Sy pacman",
    "pacman --noconfirm -Syuu",
    "pacman --noconfirm -Syuu",
    "pacman --noconfirm -Sy mingw-w64-x86_64-gcc make",
]

#
# Cross compilation
#

MINGW_CHOST = "x86_64-w64-mingw32"
CONFIGURE_CFLAGS = "-static"
MAKE_FLAGS = "WINDOWS_STAT_INODES=1"

# link libiconv and libintl statically instead of through their import libraries
STATIC_LIBRARY_REWRITES: list[tuple[str, str]] = [
    ("/libiconv.dll.a", "/libiconv.a"),
    ("/libintl.dll.a", "/libintl.a"),
]

# the permission check in the test harness rejects directories created under MSYS2
TEST_INIT_PERMS_CHECK = "case $perms in drwx--[-S]---*"
TEST_INIT_PERMS_RELAXED = "case $perms in drwx*"

#
# Upstream tests known to pass on the target, executed one by one
#

ALLOWED_TESTS = [
    "basic",
    "bignum",
    "brief-vs-stat-zero-kernel-lies",
    "colliding-file-names",
    "diff3",
    "excess-slash",
    "function-line-vs-leading-space",
    "ignore-matching-lines",
    "label-vs-func",
    "new-file",
    "no-newline-at-eof",
    "stdin",
    "strcoll-0-names",
]
