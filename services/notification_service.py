#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""In-app notifications for tenant members."""

from typing import Any, Dict, List, Optional, Sequence

import db
from sqlalchemy.ext.asyncio import AsyncSession


class NotificationService:
  """Creates notification rows. Callers own the transaction."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def notify_tenant(
      self,
      tenant_id: str,
      roles: Sequence[str],
      limit: int,
      notification_type: str,
      title: str,
      body: str,
      action_url: Optional[str] = None,
      data: Optional[Dict[str, Any]] = None,
  ) -> List[str]:
    """Notifies up to `limit` members of a tenant holding one of `roles`.

    Returns:
      The IDs of the notified users.
    """
    user_ids = await db.get_tenant_member_ids(
        self.session, tenant_id, roles, limit
    )
    for user_id in user_ids:
      await db.create_notification(
          self.session,
          user_id,
          notification_type,
          title,
          body,
          action_url=action_url,
          data=data,
      )
    return user_ids
