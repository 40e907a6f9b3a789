"""
Convert uploads to a Kindle-friendly format with calibre's ebook-convert.
The tool's exit status is not trusted alone: the output file must exist afterwards.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

@dataclass
class ConverterConfig:
    ebook_convert_path: str="ebook-convert" # install calibre: ```sudo apt install calibre``` for ubuntu
    target_format: str="epub"
    timeout_seconds: int=300

@dataclass
class ConversionResult:
    success: bool
    input_path: str
    output_path: str
    error: Optional[str]=None

def convert(input_path: Union[str, Path], output_path: Union[str, Path], config: ConverterConfig) -> ConversionResult:
    """
    Run ebook-convert on input_path, writing output_path.

    Never deletes input_path. On failure output_path may be missing or partial; the caller discards it.
    """
    input_path, output_path = str(input_path), str(output_path)
    cmd = [config.ebook_convert_path, input_path, output_path]
    logger.debug(f"Running ebook-convert: {input_path} -> {output_path}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=config.timeout_seconds)
    except subprocess.TimeoutExpired:
        logger.error(f"ebook-convert timed out after {config.timeout_seconds}s for {input_path}")
        return ConversionResult(
            success=False,
            input_path=input_path,
            output_path=output_path,
            error=f"Conversion timed out after {config.timeout_seconds}s"
        )
    except FileNotFoundError:
        logger.error(f"ebook-convert executable not found: {config.ebook_convert_path}")
        return ConversionResult(
            success=False,
            input_path=input_path,
            output_path=output_path,
            error="ebook-convert executable not found. Install calibre: sudo apt install calibre"
        )
    except OSError as e:
        logger.error(f"Could not run ebook-convert: {e}")
        return ConversionResult(
            success=False,
            input_path=input_path,
            output_path=output_path,
            error=str(e)
        )

    if result.returncode != 0:
        stderr = (result.stderr or "").strip().splitlines()
        detail = stderr[-1] if stderr else f"exit status {result.returncode}"
        logger.error(f"ebook-convert error for {input_path}: {detail}")
        return ConversionResult(
            success=False,
            input_path=input_path,
            output_path=output_path,
            error=f"ebook-convert failed: {detail}"
        )

    if not Path(output_path).exists():
        logger.error(f"Conversion failed: output file not created ({output_path})")
        return ConversionResult(
            success=False,
            input_path=input_path,
            output_path=output_path,
            error="Output file not created"
        )

    logger.info(f"Converted {Path(input_path).name} to {Path(output_path).name}")
    return ConversionResult(
        success=True,
        input_path=input_path,
        output_path=output_path
    )
