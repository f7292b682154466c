# markwise/db/base.py
# Import Base from here when every model must be registered (create_all).
from markwise.db.base_class import Base  # noqa

from markwise.models.user import User  # noqa
from markwise.models.classroom import Classroom, Enrollment  # noqa
from markwise.models.assessment import Assessment, Question, MarkSchemePoint  # noqa
from markwise.models.submission import Submission, SubmissionFile, QuestionResult  # noqa
