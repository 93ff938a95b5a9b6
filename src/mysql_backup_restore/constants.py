from __future__ import annotations

API_GROUP = "mysql.oracle.com"
API_VERSION = "v1"

BACKUP_KIND = "MySQLBackup"
BACKUP_PLURAL = "mysqlbackups"
RESTORE_KIND = "MySQLRestore"
RESTORE_PLURAL = "mysqlrestores"
CLUSTER_KIND = "MySQLCluster"
CLUSTER_PLURAL = "mysqlclusters"

# Records which operator build last processed a resource. Audit only.
MYSQL_OPERATOR_VERSION_LABEL = "v1.mysql.oracle.com/version"

CLUSTER_LABEL = "v1.mysql.oracle.com/cluster"
CLUSTER_ROLE_LABEL = "v1.mysql.oracle.com/role"
CLUSTER_ROLE_PRIMARY = "primary"

DEFAULT_STORAGE_PROVIDER = "s3"
