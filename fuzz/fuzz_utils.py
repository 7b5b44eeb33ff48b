import sys

import atheris

with atheris.instrument_imports():
    from mirror.utils import (
        chunk_bytes,
        parse_bool,
        parse_float,
        parse_int,
        split_csv,
        unwrap_wav,
    )


def TestOneInput(data: bytes) -> None:
    """Fuzz utility parsing functions with arbitrary input."""
    value = data.decode("utf-8", errors="ignore")

    # Parsers with default fallbacks should never raise
    parse_bool(value)
    parse_int(value, default=0)
    parse_float(value, default=0.0)
    split_csv(value)

    if len(data) > 0:
        size = (data[0] % 64) + 1  # 1-64 byte chunks
        assert b"".join(chunk_bytes(data, size)) == data

    # Request bodies: anything that is not a readable WAV must raise ValueError
    try:
        unwrap_wav(data)
    except ValueError:
        pass


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
