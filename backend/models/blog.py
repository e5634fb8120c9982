# backend/models/blog.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database import Base


# Blog post; only the tag relations matter to the consistency core
class Blog(Base):
    __tablename__ = "blogs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    author = Column(String, nullable=False)
    category = Column(String, nullable=True, default="education")
    created_at = Column(DateTime, server_default=func.now())

    tag_links = relationship("BlogTagRelation", passive_deletes=True)


class BlogTag(Base):
    __tablename__ = "blog_tags"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)


# Junction row between a blog and a tag
class BlogTagRelation(Base):
    __tablename__ = "blog_tag_relations"

    id = Column(Integer, primary_key=True, index=True)
    blog_id = Column(Integer, ForeignKey("blogs.id", ondelete="CASCADE"), nullable=False, index=True)
    tag_id = Column(Integer, ForeignKey("blog_tags.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("blog_id", "tag_id", name="uq_blog_tag"),
    )
