# Importing any model registers all of them, so string relationships resolve.
from markwise.models.user import User  # noqa
from markwise.models.classroom import Classroom, Enrollment  # noqa
from markwise.models.assessment import Assessment, Question, MarkSchemePoint  # noqa
from markwise.models.submission import Submission, SubmissionFile, QuestionResult  # noqa
