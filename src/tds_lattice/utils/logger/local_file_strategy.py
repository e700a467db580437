import os
from datetime import datetime

from .log_storage_strategy import LogStorageStrategy


class LocalFileStrategy(LogStorageStrategy):
    """
    Writes simulation log entries to a local text file.
    """

    # INITIALIZE LOG STORAGE STRATEGY
    def __init__(self, file_location, truncate=True):
        """
        Args:
            file_location (str): Path of the log file, relative paths resolve against cwd.
            truncate (bool): Start from an empty file when True, append otherwise.
        """
        self.file_location = self.resolve_file_path(file_location)
        if truncate or not os.path.exists(self.file_location):
            self.initialize_log_file()

    # RESOLVE FILE PATH TO ABSOLUTE AND CREATE DIRECTORIES IF NEEDED
    def resolve_file_path(self, file_location):
        file_location = os.fspath(file_location)
        if not os.path.isabs(file_location):
            file_location = os.path.join(os.getcwd(), file_location)

        dir_name = os.path.dirname(file_location)
        if dir_name and not os.path.exists(dir_name):
            os.makedirs(dir_name)

        return file_location

    # CREATE OR RESET THE LOG FILE
    def initialize_log_file(self):
        with open(self.file_location, 'w') as log_file:
            log_file.write(f"LOG INITIALIZATION: {datetime.now()}\n")

    # STORE A LOG ENTRY IN THE FILE
    def store_log(self, message, priority, timestamp):
        with open(self.file_location, 'a') as log_file:
            log_file.write(f"[{timestamp}] [{priority}] {message}\n")

    # CLEAR ALL LOG ENTRIES FROM THE FILE
    def flush_logs(self):
        with open(self.file_location, 'w') as log_file:
            log_file.write(f"LOG FLUSHED: {datetime.now()}\n")

    def read_entries(self):
        """Return the logged lines, header excluded."""
        with open(self.file_location, 'r') as log_file:
            lines = log_file.read().splitlines()
        return [line for line in lines if line.startswith("[")]
