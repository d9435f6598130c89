from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, ForeignKey, Index, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from citadel.core.database import Base

# Roles carried in session tokens
ROLE_ADMIN = "Admin"
ROLE_LIBRARIAN = "Librarian"
ROLE_FACULTY = "Faculty"
ROLE_STUDENT = "Student"
STAFF_ROLES = (ROLE_ADMIN, ROLE_LIBRARIAN)
MEMBER_TYPES = (ROLE_STUDENT, ROLE_FACULTY)

COPY_AVAILABLE = "Available"
COPY_ISSUED = "Issued"
COPY_REMOVED = "Removed"
COPY_DAMAGED = "Damaged"

TXN_ISSUED = "Issued"
TXN_RETURNED = "Returned"
TXN_OVERDUE = "Overdue"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    user_type = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_STUDENT)
    total_fine = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    transactions = relationship("Transaction", back_populates="user", foreign_keys="Transaction.user_id")


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    books = relationship("Book", back_populates="category")


class Book(Base):
    __tablename__ = "books"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    isbn = Column(String, unique=True, index=True, nullable=True)
    publisher = Column(String, nullable=True)
    publication_year = Column(Integer, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    total_copies = Column(Integer, nullable=False, default=0)
    available_copies = Column(Integer, nullable=False, default=0, index=True)
    shelf_location = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    category = relationship("Category", back_populates="books")
    copies = relationship("BookCopy", back_populates="book")

Index('ix_books_title_author', Book.title, Book.author)


class BookCopy(Base):
    __tablename__ = "book_copies"
    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    copy_number = Column(Integer, nullable=False)
    book_copy_id = Column(String, unique=True, nullable=False, index=True)
    status = Column(String, nullable=False, default=COPY_AVAILABLE, index=True)
    removed_at = Column(DateTime, nullable=True)
    book = relationship("Book", back_populates="copies")


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_copy_id = Column(Integer, ForeignKey("book_copies.id"), nullable=False, index=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    issued_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    returned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    fine_amount = Column(Integer, nullable=False, default=0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default=TXN_ISSUED, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    user = relationship("User", back_populates="transactions", foreign_keys=[user_id])
    copy = relationship("BookCopy")

Index('ix_transactions_copy_status', Transaction.book_copy_id, Transaction.status)


class Fine(Base):
    __tablename__ = "fines"
    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
