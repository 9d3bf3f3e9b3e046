"""用户模型。"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from iam_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """本地用户账号。

    账号的注册、登录与令牌签发不在本服务内，这里只作为授权事实的归属方。
    """

    __tablename__ = "users"

    # 登录与通知主邮箱，全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # 前端展示名。
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 用户状态（active/disabled）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
