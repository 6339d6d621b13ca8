"""
Parsers for .env files, supporting quotes, comments and export prefixes.
"""
import io
import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

class EnvParser:
    """
    Parser for .env files.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses an .env file from a path.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Dictionary of environment variables.
        """
        with open(env_path, 'r') as f:
            content = f.read()
        return EnvParser.parse_from_string(content)

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses environment variables from a string.
        Keys without a value ('KEY' alone) map to an empty string.
        """
        values = dotenv_values(stream=io.StringIO(content), interpolate=False)
        return {key: value if value is not None else '' for key, value in values.items()}

    @staticmethod
    def merge(env_path: Optional[str], environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Merges the .env file with the process environment.
        The process environment wins, as it does for docker compose.

        Args:
            env_path (Optional[str]): Path to the .env file; skipped when missing.
            environ (Optional[Mapping[str, str]]): Environment overlay, defaults to os.environ.

        Returns:
            Dict[str, str]: Merged variables.
        """
        merged: Dict[str, str] = {}
        if env_path and os.path.exists(env_path):
            merged.update(EnvParser.parse(env_path))
        merged.update(os.environ if environ is None else environ)
        return merged
