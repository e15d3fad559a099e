# Import every model so Base.metadata sees all tables
from spliteasy.models.user import User
from spliteasy.models.group import Group
from spliteasy.models.group_member import GroupMember
from spliteasy.models.expense import Expense
from spliteasy.models.expense_split import ExpenseSplit
from spliteasy.models.settlement import Settlement
from spliteasy.models.payment import Payment
from spliteasy.models.message import Message
