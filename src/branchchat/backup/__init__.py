from branchchat.backup.manager import BackupManager, BackupTarget, DirectoryBackupTarget

__all__ = ["BackupManager", "BackupTarget", "DirectoryBackupTarget"]
