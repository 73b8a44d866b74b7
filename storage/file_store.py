"""File store for timestamped API responses."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class FileStore:
    """Writes API responses under an output directory."""

    def __init__(self, output_dir: Union[str, Path]):
        """
        Initialize the file store and create the output directory.

        Args:
            output_dir: Directory that receives all written files
        """
        self.output_dir = Path(output_dir)
        self.ensure_output_folder_exists()
        logger.info(f"Initialized FileStore for directory: {self.output_dir}")

    def ensure_output_folder_exists(self) -> None:
        """Create the output directory and any missing parents."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def get_output_folder(self) -> Path:
        """Directory all files are written to."""
        return self.output_dir

    def get_formatted_timestamp(self) -> str:
        """
        Current UTC time formatted for use in filenames.

        Returns:
            Timestamp such as ``2024-01-15-10-30-00``
        """
        now = datetime.now(timezone.utc)
        return now.strftime('%Y-%m-%d-%H-%M-%S')

    def get_timestamped_filename(
        self,
        prefix: str,
        event_id: Optional[str] = None,
        extension: str = 'json'
    ) -> str:
        """
        Build a filename of the form ``{prefix}[_{event_id}]_{timestamp}.{ext}``.

        Args:
            prefix: Filename prefix
            event_id: Optional event identifier
            extension: File extension without the dot

        Returns:
            Filename (without directory)
        """
        timestamp = self.get_formatted_timestamp()
        if event_id:
            return f"{prefix}_{event_id}_{timestamp}.{extension}"
        return f"{prefix}_{timestamp}.{extension}"

    def save_to_file(self, data: Union[str, bytes], filename: str) -> Path:
        """
        Write a payload unchanged to the output directory.

        Args:
            data: Text or raw bytes to write
            filename: Target filename inside the output directory

        Returns:
            Path of the written file
        """
        file_path = self.output_dir / filename
        if isinstance(data, bytes):
            file_path.write_bytes(data)
        else:
            file_path.write_text(data, encoding='utf-8')

        logger.info(f"Data saved to file: {file_path}")
        return file_path

    def save_json(self, data: Any, filename: str) -> Path:
        """Serialize ``data`` as indented JSON and write it."""
        return self.save_to_file(
            json.dumps(data, indent=2, ensure_ascii=False),
            filename
        )
