from typing import AsyncIterator, Optional
from ..models.files import ObjectPage, ObjectSummary


class PrefixWalker:
  """
  Walk through all the objects stored under a prefix, one page at a time.

  The walk state is `has_more` and the `continuation_token` handed back by the
  previous page. A failing page request propagates its error and ends the walk,
  remaining pages are never skipped silently. Objects added or removed under the
  prefix while walking may or may not be visited.
  """

  def __init__(self, s3_service, prefix: str, page_size: int = 1000):
    self.s3_service = s3_service
    self.prefix = prefix
    self.page_size = page_size
    self.has_more = True
    self.continuation_token: Optional[str] = None
    self.pages_read = 0

  async def next_page(self) -> ObjectPage:
    """Fetch the next page and advance the walk state.

    Returns:
        ObjectPage: The page of objects, empty when the walk is over.
    """
    if not self.has_more:
      return ObjectPage()
    page = await self.s3_service.list_page(self.prefix, self.continuation_token, self.page_size)
    self.pages_read += 1
    self.continuation_token = page.next_token if page.truncated else None
    self.has_more = self.continuation_token is not None
    return page

  async def pages(self) -> AsyncIterator[ObjectPage]:
    while self.has_more:
      page = await self.next_page()
      if page.objects:
        yield page

  async def objects(self) -> AsyncIterator[ObjectSummary]:
    async for page in self.pages():
      for obj in page.objects:
        yield obj
