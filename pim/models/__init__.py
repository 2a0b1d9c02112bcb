from pim.models.category import Category
