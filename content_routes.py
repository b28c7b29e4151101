"""
Newsletter signup and the public side of the blog.

Drafts are only visible to admins; everyone else gets a 404 for them.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from auth import TokenSubject, optional_subject
from deps import get_storage
from errors import NotFoundError
from schemas import Article, NewsletterSubscriber, SubscribeRequest
from storage import Storage

content_router = APIRouter(prefix="/api", tags=["content"])


@content_router.post("/newsletter/subscribe", response_model=NewsletterSubscriber, status_code=201)
def subscribe(payload: SubscribeRequest, storage: Storage = Depends(get_storage)):
    return storage.create_subscriber(payload.email)


@content_router.get("/articles", response_model=List[Article])
def list_articles(
    published: bool = False,
    subject: Optional[TokenSubject] = Depends(optional_subject),
    storage: Storage = Depends(get_storage),
):
    is_admin = subject is not None and subject.is_admin
    return storage.list_articles(published_only=published or not is_admin)


@content_router.get("/articles/{slug}", response_model=Article)
def get_article(
    slug: str,
    subject: Optional[TokenSubject] = Depends(optional_subject),
    storage: Storage = Depends(get_storage),
):
    article = storage.get_article_by_slug(slug)
    if article is None or (not article.published and not (subject and subject.is_admin)):
        raise NotFoundError("Article not found")
    return article
