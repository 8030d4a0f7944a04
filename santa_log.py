"""
Santa Logger - Records coordinator notifications to file
Match indices only appear once they have been revealed to their owner
"""
import os
from datetime import datetime


class SantaLogger:
    """Appends coordinator events to logs/santa.log"""

    def __init__(self, log_dir: str = "logs", filename: str = "santa.log"):
        self.log_dir = log_dir
        self.log_file = os.path.join(self.log_dir, filename)

        os.makedirs(self.log_dir, exist_ok=True)

        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write("=" * 50 + "\n")
            f.write(f"Secret Santa log opened {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write("=" * 50 + "\n")

    def log(self, message: str):
        """Write a log message with timestamp"""
        timestamp = datetime.now().strftime('%H:%M:%S')
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(f"[{timestamp}] {message}\n")

    def __call__(self, event):
        """Subscriber hook: SecretSanta.subscribe(logger)"""
        fields = ", ".join(f"{k}={v}" for k, v in event.args().items())
        self.log(f"{event.name}({fields})")
