"""
Text transformations used by TextAndWhitespace.

Every function here works on a whole decoded buffer and returns a new string.
Nothing in this module touches the file system.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger("TextAndWhitespace.transforms")

CR = "\r"
LF = "\n"
CRLF = "\r\n"
TAB = "\t"

# Unicode White_Space characters. str.isspace also counts \x1c-\x1f, which
# are content here.
WHITESPACE = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

GENERATED_CODE_MARKER = "This code was generated"


@dataclass(frozen=True)
class TransformOptions:
    """Which passes process_text applies, and how wide a leading tab becomes."""

    ensure_crlf: bool = False
    tabs_to_spaces: bool = False
    trim_trailing_whitespace: bool = False
    remove_consecutive_empty_lines: bool = False
    tab_width: int = 4

    def __post_init__(self) -> None:
        if self.tab_width < 0:
            raise ValueError(f"tab_width must be >= 0, got {self.tab_width}")


def get_line_lengths(text: str) -> List[int]:
    """
    Split text into line lengths, terminators included.

    A carriage return only ends a line when it is followed by a line feed or
    by a second carriage return. A lone CR followed by anything else stays in
    the line as content. The lengths always add up to len(text).
    """
    if text is None:
        raise TypeError("text must not be None")

    if not text:
        return []

    result: List[int] = []
    current_length = 0
    previous_was_cr = False

    for ch in text:
        if ch == CR:
            current_length += 1
            if previous_was_cr:
                result.append(current_length)
                current_length = 0
                previous_was_cr = False
            else:
                previous_was_cr = True
        elif ch == LF:
            previous_was_cr = False
            current_length += 1
            result.append(current_length)
            current_length = 0
        else:
            previous_was_cr = False
            current_length += 1

    result.append(current_length)

    # Buffer ended on an unresolved CR
    if previous_was_cr:
        result.append(0)

    return result


def get_lines(text: str, include_line_breaks: bool = False) -> List[str]:
    """Slice text into lines, with or without their terminators."""
    lines: List[str] = []
    position = 0
    for line_length in get_line_lengths(text):
        line = text[position : position + line_length]
        position += line_length
        if not include_line_breaks:
            if line.endswith(CRLF):
                line = line[:-2]
            elif line.endswith((CR, LF)):
                line = line[:-1]
        lines.append(line)
    return lines


def ensure_crlf(text: str) -> str:
    """Promote bare LF and bare CR terminators to CRLF."""
    if text is None:
        raise TypeError("text must not be None")

    if not text:
        return text

    out: List[str] = []
    previous: Optional[str] = None

    if text[0] == LF:
        out.append(CR)

    for ch in text:
        if previous is not None and previous != CR and ch == LF:
            out.append(CR)
        if previous == CR and ch != LF:
            out.append(LF)
        out.append(ch)
        previous = ch

    # NOTE: a CR that is the very last character is left alone.
    return "".join(out)


def replace_leading_tabs(text: str, spaces_per_tab: int) -> str:
    """Replace tabs in the indentation of each line with spaces_per_tab spaces."""
    if text is None:
        raise TypeError("text must not be None")

    spaces = " " * spaces_per_tab
    out: List[str] = []
    at_line_start = True

    for ch in text:
        if ch in (CR, LF):
            at_line_start = True
            out.append(ch)
        elif ch == TAB:
            out.append(spaces if at_line_start else ch)
        elif ch == " ":
            out.append(ch)
        else:
            at_line_start = False
            out.append(ch)

    return "".join(out)


def trim_trailing_whitespace(text: str, separator: str = CRLF) -> str:
    """
    Strip trailing whitespace from every line.

    Lines are rejoined with separator, so whatever terminators the input had
    come out uniform. A trailing empty line (text ending on a terminator) is
    kept, which means the output ends on separator as well.
    """
    return separator.join(line.rstrip(WHITESPACE) for line in get_lines(text))


def remove_consecutive_empty_lines(text: str) -> str:
    """Collapse each "\\n\\r\\n\\r" run into "\\n\\r"."""
    if text is None:
        raise TypeError("text must not be None")
    return text.replace("\n\r\n\r", "\n\r")


def is_generated_code(text: str) -> bool:
    return GENERATED_CODE_MARKER in text


def is_protected_text(text: str) -> bool:
    """True for content that must never be rewritten (generated or NUL-bearing)."""
    return is_generated_code(text) or "\0" in text


def process_text(
    text: str,
    extension: Optional[str] = None,
    options: Optional[TransformOptions] = None,
) -> str:
    """
    Run the enabled passes over text, in a fixed order.

    Returns text itself when it is protected or when no pass changed it, so
    callers can compare the result with the input to decide whether to
    rewrite anything.
    """
    if text is None:
        raise TypeError("text must not be None")

    if options is None:
        options = TransformOptions()

    if is_protected_text(text):
        logger.debug("Leaving generated or binary-looking content untouched")
        return text

    new_text = text
    if options.ensure_crlf:
        new_text = ensure_crlf(new_text)

    if options.tabs_to_spaces:
        new_text = replace_leading_tabs(new_text, options.tab_width)

    if options.trim_trailing_whitespace:
        new_text = trim_trailing_whitespace(new_text)

    if options.remove_consecutive_empty_lines:
        new_text = remove_consecutive_empty_lines(new_text)

    if new_text == text:
        return text

    logger.debug("Transformed %s content", extension or "extensionless")
    return new_text
