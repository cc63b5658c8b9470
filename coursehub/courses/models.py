from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, List, Optional, Literal, Union, Any
from datetime import datetime
from enum import Enum
from coursehub.config import DEFAULT_QUIZ_PASSING_SCORE, DEFAULT_QUIZ_ATTEMPTS

# ==================== ENUMS ====================

class UserRole(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"

class CourseCategory(str, Enum):
    WEB_DEVELOPMENT = "web-development"
    MOBILE_DEVELOPMENT = "mobile-development"
    DATA_SCIENCE = "data-science"
    DIGITAL_MARKETING = "digital-marketing"
    BUSINESS = "business"
    DESIGN = "design"
    OTHER = "other"

class CourseLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"

class CourseStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"

class LessonType(str, Enum):
    VIDEO = "video"
    TEXT = "text"
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"
    LIVE = "live"
    DOWNLOAD = "download"

class EnrollmentType(str, Enum):
    FREE = "free"
    PAID = "paid"
    MANUAL = "manual"

class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    REFUNDED = "refunded"

class AssignmentStatus(str, Enum):
    NOT_SUBMITTED = "not-submitted"
    SUBMITTED = "submitted"
    GRADED = "graded"

class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"

# ==================== LESSON CONTENT ====================
# One variant per lesson type, selected by the "type" tag.

class FileRef(BaseModel):
    name: str
    url: str
    type: Optional[str] = None
    size: Optional[int] = None

class Subtitle(BaseModel):
    language: str
    url: str

class VideoContent(BaseModel):
    type: Literal["video"] = "video"
    source: Optional[Literal["upload", "youtube", "vimeo", "embed"]] = None
    url: Optional[str] = None
    duration: Optional[int] = None
    quality: Optional[str] = None
    subtitles: List[Subtitle] = []

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    body: str = ""
    attachments: List[FileRef] = []

class QuizContent(BaseModel):
    type: Literal["quiz"] = "quiz"
    quiz_id: Optional[str] = None

class AssignmentContent(BaseModel):
    type: Literal["assignment"] = "assignment"
    instructions: str = ""
    max_score: Optional[float] = None
    due_date: Optional[datetime] = None
    allowed_file_types: List[str] = []
    max_file_size: Optional[int] = None

class LiveContent(BaseModel):
    type: Literal["live"] = "live"
    meeting_url: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration: Optional[int] = None
    recording_url: Optional[str] = None

class DownloadContent(BaseModel):
    type: Literal["download"] = "download"
    files: List[FileRef] = []

LessonContent = Annotated[
    Union[VideoContent, TextContent, QuizContent, AssignmentContent, LiveContent, DownloadContent],
    Field(discriminator="type"),
]

_lesson_content_adapter = TypeAdapter(LessonContent)


def parse_lesson_content(lesson_type: str, content: Optional[dict]) -> dict:
    """Validate lesson content against the variant for its lesson type."""
    data = dict(content or {})
    data["type"] = LessonType(lesson_type).value
    return _lesson_content_adapter.validate_python(data).model_dump(mode="json")

# ==================== COURSE STRUCTURE ====================

class LessonInput(BaseModel):
    # title/type are checked by the course editor so a bad lesson reports its position
    lesson_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    type: Optional[LessonType] = None
    order: Optional[int] = None
    duration: int = Field(0, ge=0)
    content: Optional[dict] = None
    is_preview: bool = False
    is_free: bool = False

class ModuleInput(BaseModel):
    module_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    order: Optional[int] = None
    lessons: List[LessonInput] = []

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=50, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=500)
    category: CourseCategory
    level: CourseLevel
    price: float = Field(..., ge=0)
    currency: str = "NGN"
    tags: List[str] = []
    requirements: List[str] = []
    learning_outcomes: List[str] = []
    certificate_enabled: bool = True
    modules: List[ModuleInput] = []

class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=50, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=500)
    category: Optional[CourseCategory] = None
    level: Optional[CourseLevel] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    tags: Optional[List[str]] = None
    requirements: Optional[List[str]] = None
    learning_outcomes: Optional[List[str]] = None
    certificate_enabled: Optional[bool] = None
    modules: Optional[List[ModuleInput]] = None

class LessonCreate(BaseModel):
    course_id: str
    module_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: LessonType
    order: Optional[int] = None
    duration: int = Field(0, ge=0)
    content: Optional[dict] = None
    is_preview: bool = False
    is_free: bool = False

class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    order: Optional[int] = None
    duration: Optional[int] = Field(None, ge=0)
    content: Optional[dict] = None
    is_preview: Optional[bool] = None
    is_free: Optional[bool] = None

# ==================== ENROLLMENT MODELS ====================

class EnrollmentCreate(BaseModel):
    course_id: str
    enrollment_type: EnrollmentType = EnrollmentType.PAID

class EnrollmentUpdate(BaseModel):
    status: EnrollmentStatus

class LessonCompletion(BaseModel):
    lesson_id: str
    time_spent: int = Field(0, ge=0)

class AssignmentSubmission(BaseModel):
    text: Optional[str] = None
    files: List[FileRef] = []

class AssignmentGrade(BaseModel):
    score: float = Field(..., ge=0)
    feedback: Optional[str] = None

# ==================== QUIZ MODELS ====================

class QuizOption(BaseModel):
    option_id: Optional[str] = None
    text: str
    is_correct: bool = False

class QuizQuestion(BaseModel):
    question_id: Optional[str] = None
    type: QuestionType
    text: str
    options: List[QuizOption] = []
    correct_answer: Optional[str] = None
    points: int = Field(1, ge=0)

class QuizCreate(BaseModel):
    course_id: str
    lesson_id: Optional[str] = None
    title: str
    questions: List[QuizQuestion] = []
    passing_score: int = Field(DEFAULT_QUIZ_PASSING_SCORE, ge=0, le=100)
    attempts: int = Field(DEFAULT_QUIZ_ATTEMPTS, ge=0)  # 0 = unlimited

class QuizUpdate(BaseModel):
    title: Optional[str] = None
    questions: Optional[List[QuizQuestion]] = None
    passing_score: Optional[int] = Field(None, ge=0, le=100)
    attempts: Optional[int] = Field(None, ge=0)

class QuizAnswer(BaseModel):
    question_id: str
    answer: Any = None

class QuizAttemptCreate(BaseModel):
    enrollment_id: str
    answers: List[QuizAnswer] = []
    time_spent: int = Field(0, ge=0)

# ==================== REVIEW / CERTIFICATE MODELS ====================

class ReviewCreate(BaseModel):
    course_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)

class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)

class CertificateCreate(BaseModel):
    enrollment_id: str
