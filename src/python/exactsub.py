#!/usr/bin/env python3
"""
Exact Substitution

Replace every occurrence of a byte string FROM with a byte string TO while
streaming from an input to an output, without holding the input in memory.

FROM and TO may contain any bytes; there are no special characters, no
escapes and no encoding.  Matching is leftmost-first and non-overlapping:
after a match the scan resumes just past it, so FROM="aa" matches "aaa"
once.  An empty FROM matches at every byte boundary, so TO is inserted
before each byte and once more at the end.

Memory use is one buffer whose capacity is the next power of two at or
above max(MIN_BUF_CAP, len(FROM)).  Only the last len(FROM)-1 bytes of the
buffer can begin a match that straddles the next read; everything before
that point is written out and the tail is shifted to the front.

Usage:
  python exactsub.py FROM TO < input > output
  python exactsub.py --verbose --search horspool FROM TO < input > output
"""

import argparse
import os
import sys
from dataclasses import dataclass
from functools import lru_cache


MIN_BUF_CAP = 1024          # smallest working buffer, amortizes read calls
MAX_BUF_CAP = 1 << 31       # largest capacity a signed 32-bit length can hold

USAGE = "Usage: exactsub FROM TO"


@dataclass
class SubstOptions:
    """Options for the streaming replacer."""
    min_cap: int = MIN_BUF_CAP
    search: str = 'native'
    verbose: bool = False


# ============================================================================
# Errors
# ============================================================================

class ExactsubError(Exception):
    """Base class for stream failures during substitution."""


class ReadError(ExactsubError):
    """The input stream failed on a read.  The OSError is the __cause__."""


class WriteError(ExactsubError):
    """The output stream failed on a write.  The OSError is the __cause__."""


class PatternTooLarge(ValueError):
    """FROM is too long for any buffer capacity we are willing to allocate."""


def _describe(err: OSError) -> str:
    return err.strerror or str(err)


# ============================================================================
# Byte-substring search
#
# Every searcher has the signature find(haystack, needle, start, end) and
# returns the absolute offset of the first occurrence of needle lying
# entirely inside haystack[start:end], or -1.  The needle must be non-empty.
# ============================================================================

def find_native(haystack, needle: bytes, start: int = 0, end: int = None) -> int:
    """First occurrence via bytes.find / bytearray.find (a C memory search)."""
    if not needle:
        raise ValueError("needle must be non-empty")
    if end is None:
        end = len(haystack)
    return haystack.find(needle, start, end)


@lru_cache(maxsize=16)
def _horspool_shifts(needle: bytes) -> tuple:
    """Return the 256-entry bad-character shift table for needle.

    shift[c] is the distance from the last occurrence of byte c in
    needle[:-1] to the end of the needle, or len(needle) if c is absent.
    """
    m = len(needle)
    shift = [m] * 256
    for i in range(m - 1):
        shift[needle[i]] = m - 1 - i
    return tuple(shift)


def find_horspool(haystack, needle: bytes, start: int = 0, end: int = None) -> int:
    """First occurrence via Boyer-Moore-Horspool (Horspool 1980).

    Compares each alignment right to left; on a mismatch the window slides
    by the shift of the haystack byte under the needle's last position.
    """
    if not needle:
        raise ValueError("needle must be non-empty")
    n = len(haystack) if end is None else min(end, len(haystack))
    m = len(needle)
    last = m - 1
    shift = _horspool_shifts(bytes(needle))

    pos = max(start, 0)
    while pos + m <= n:
        j = last
        while haystack[pos + j] == needle[j]:
            if j == 0:
                return pos
            j -= 1
        pos += shift[haystack[pos + last]]
    return -1


SEARCHERS = {
    'native': find_native,
    'horspool': find_horspool,
}


# ============================================================================
# Buffer sizing
# ============================================================================

def choose_capacity(from_len: int, min_cap: int = MIN_BUF_CAP) -> int:
    """Smallest power of two >= max(min_cap, from_len).

    Raises PatternTooLarge instead of growing past MAX_BUF_CAP.
    """
    if min_cap < 1:
        raise ValueError(f"minimum buffer capacity must be >= 1, got {min_cap}")
    want = max(min_cap, from_len)
    cap = 1
    while cap < want:
        cap *= 2
        if cap > MAX_BUF_CAP:
            raise PatternTooLarge(
                f"pattern too large: {want:,} bytes needs a buffer above "
                f"{MAX_BUF_CAP:,} bytes")
    return cap


# ============================================================================
# Checked I/O
#
# Streams may be raw (short reads and short writes) or buffered.  A failure
# is wrapped once and propagated; nothing here retries.
# ============================================================================

def checked_read(inp, dest) -> int:
    """Read up to len(dest) bytes from inp into dest; 0 means EOF."""
    try:
        readinto = getattr(inp, 'readinto', None)
        if readinto is not None:
            n = readinto(dest)
        else:
            data = inp.read(len(dest))
            n = None if data is None else len(data)
            if n is not None and n > len(dest):
                raise ReadError(f"read error: input stream returned {n} bytes, "
                                f"asked for {len(dest)}")
            if n:
                dest[:n] = data
    except OSError as e:
        raise ReadError(f"read error: {_describe(e)}") from e
    if n is None:
        raise ReadError("read error: input stream would block")
    return n


def checked_write(out, data) -> None:
    """Write all of data to out, continuing after short writes."""
    view = memoryview(data)
    try:
        while len(view):
            n = out.write(view)
            # Buffered and text-like sinks return None or the full length.
            if n is None or n >= len(view):
                break
            if n == 0:
                raise WriteError("write error: output stream accepted no data")
            view = view[n:]
    except OSError as e:
        raise WriteError(f"write error: {_describe(e)}") from e


def checked_flush(out) -> None:
    try:
        out.flush()
    except OSError as e:
        raise WriteError(f"write error: {_describe(e)}") from e


# ============================================================================
# Streaming replacer
# ============================================================================

def _print_header(from_len: int, to_len: int, cap: int, search: str) -> None:
    print(f"exactsub: |FROM|={from_len:,}, |TO|={to_len:,}, "
          f"capacity={cap:,}, search={search}", file=sys.stderr)


def _print_stats(total_read: int, occurs: int) -> None:
    """Print the shared end-of-run statistics for both replacer paths."""
    print(f"  read {total_read:,} bytes", file=sys.stderr)
    print(f"occurrences: {occurs}", file=sys.stderr)


def exactsubst(from_: bytes, to: bytes, inp, out, *,
               opts: 'SubstOptions' = None) -> int:
    """Copy inp to out replacing each occurrence of from_ with to.

    Returns the number of replacements.  Raises ReadError or WriteError on
    stream failure; output written before the failure is left in place.
    """
    if opts is None:
        opts = SubstOptions()
    from_ = bytes(from_)
    to = bytes(to)

    if not from_:
        if opts.verbose:
            _print_header(0, len(to), 1, 'bytewise')
        occurs = exactsubst0(to, inp, out)
        if opts.verbose:
            # Every byte read adds one occurrence beyond the one at EOF.
            _print_stats(occurs - 1, occurs)
        return occurs

    try:
        find = SEARCHERS[opts.search]
    except KeyError:
        raise ValueError(f"unknown search routine: {opts.search!r}") from None

    m = len(from_)
    cap = choose_capacity(m, opts.min_cap)
    if opts.verbose:
        _print_header(m, len(to), cap, opts.search)

    buf = bytearray(cap)
    view = memoryview(buf)
    buf_len = 0
    occurs = 0
    total_read = 0

    while True:
        num_read = checked_read(inp, view[buf_len:])
        if num_read == 0:
            break
        buf_len += num_read
        total_read += num_read
        if buf_len < m:
            continue

        start = 0
        while True:
            found = find(buf, from_, start, buf_len)
            if found < 0:
                break
            checked_write(out, view[start:found])
            checked_write(out, to)
            start = found + m
            occurs += 1

        # No match found so far can begin before skipto.
        skipto = buf_len - (m - 1)
        if skipto > start:
            checked_write(out, view[start:skipto])
            start = skipto
        rest = buf_len - start
        buf[:rest] = buf[start:buf_len]
        buf_len = rest

    checked_write(out, view[:buf_len])

    if opts.verbose:
        _print_stats(total_read, occurs)
    return occurs


def exactsubst0(to: bytes, inp, out) -> int:
    """Empty-pattern case: insert to before every byte and once at EOF.

    An input of N bytes yields N+1 occurrences.
    """
    occurs = 0
    c = bytearray(1)
    while True:
        n = checked_read(inp, c)
        checked_write(out, to)
        occurs += 1
        if n == 0:
            break
        checked_write(out, c)
    return occurs


# ============================================================================
# CLI helpers
# ============================================================================

def _parse_size_suffix(s: str) -> int:
    """Parse a positive size with optional k/M suffix (decimal multipliers)."""
    s = s.strip()
    if not s:
        raise argparse.ArgumentTypeError("empty size value")
    multipliers = {'k': 1_000, 'K': 1_000, 'm': 1_000_000, 'M': 1_000_000}
    try:
        if s[-1] in multipliers:
            n = int(s[:-1]) * multipliers[s[-1]]
        else:
            n = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid size: {s!r}") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"size must be >= 1: {s!r}")
    return n


class _ArgumentParser(argparse.ArgumentParser):
    """Argument errors print the one-line usage to stdout and exit 1."""

    def error(self, message):
        print(USAGE)
        sys.exit(1)


def _silence_stdout():
    # Point stdout at devnull so the interpreter's final flush does not
    # raise a second BrokenPipeError.
    try:
        fd = sys.stdout.fileno()
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, fd)
        os.close(devnull)
    except (AttributeError, OSError, ValueError):
        pass


# ============================================================================
# CLI
# ============================================================================

def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    if len(argv) < 2:
        print(USAGE)
        sys.exit(1)
    # The last two arguments are always FROM and TO, verbatim, even when
    # they look like options.  Only what precedes them is parsed.
    option_args, (from_arg, to_arg) = argv[:-2], argv[-2:]

    ap = _ArgumentParser(
        prog='exactsub',
        usage='exactsub [options] FROM TO',
        description='Replace every occurrence of FROM with TO, '
                    'from standard input to standard output.  FROM and TO '
                    'are always the last two arguments.')
    ap.add_argument('--search', choices=list(SEARCHERS), default='native',
                    help='Substring search routine (default: native)')
    ap.add_argument('--min-buffer', type=_parse_size_suffix,
                    default=MIN_BUF_CAP, metavar='N',
                    help='Minimum buffer capacity, rounded up to a power '
                         'of two (k/M suffix; default: %(default)s)')
    ap.add_argument('--verbose', action='store_true',
                    help='Report the occurrence count on stderr')
    args = ap.parse_args(option_args)

    opts = SubstOptions(
        min_cap=args.min_buffer,
        search=args.search,
        verbose=args.verbose,
    )
    # Undo the platform argument decoding to recover the raw bytes.
    from_ = os.fsencode(from_arg)
    to = os.fsencode(to_arg)

    out = sys.stdout.buffer
    try:
        exactsubst(from_, to, sys.stdin.buffer, out, opts=opts)
        checked_flush(out)
    except WriteError as e:
        if isinstance(e.__cause__, BrokenPipeError):
            _silence_stdout()
        raise SystemExit(str(e))
    except ReadError as e:
        raise SystemExit(str(e))
    except ValueError as e:
        raise SystemExit(f"error: {e}")


# ============================================================================

if __name__ == '__main__':
    main()
