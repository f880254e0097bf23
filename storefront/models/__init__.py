from storefront.models.user import User
from storefront.models.backup_code import BackupCode
