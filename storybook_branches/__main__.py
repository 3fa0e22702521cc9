from storybook_branches.reconciler import main

main()
