"""FTP/SFTP/local file tree to udata dataset harvester."""

__version__ = "0.1.0"
