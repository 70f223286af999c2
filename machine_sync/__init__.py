"""Machine Sync — mirror a local folder onto a remote machine over SFTP.

Watches a source folder for file changes and replays each create, update
or delete against a destination path on the remote host, using a single
long-lived SSH/SFTP session.
"""

__version__ = "1.0.0"
__app_name__ = "Machine Sync"
